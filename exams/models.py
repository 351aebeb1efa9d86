import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models, transaction
from django.utils import timezone

from academics.models import Class, Subject
from core.models import Term
from results.types import ATTENDANCE_CHOICES, PRESENT
from students.models import Student


class AssessmentComponent(models.Model):
    """
    School-wide library of assessment parts (e.g. "Unit Test 1 - Theory").
    Grading schemes pick components from this library and set their weightage.
    """
    name = models.CharField(
        max_length=100,
        help_text='e.g., Unit Test 1, Half Yearly Theory'
    )
    abbreviation = models.CharField(
        max_length=20,
        blank=True,
        help_text='Column heading on result sheets (e.g., UT1)'
    )
    default_max_marks = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal('100.00'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Suggested maximum marks when added to a scheme'
    )
    is_internal = models.BooleanField(
        default=False,
        help_text='Internal (continuous) assessment rather than a written exam'
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'assessment_component'
        ordering = ['name']
        verbose_name = 'Assessment Component'
        verbose_name_plural = 'Assessment Components'

    def __str__(self):
        return f"{self.name} ({self.abbreviation})" if self.abbreviation else self.name


class Exam(models.Model):
    """An examination sitting within a term (e.g. Half Yearly)."""
    class ExamType(models.TextChoices):
        UNIT_TEST = 'unit_test', 'Unit Test'
        MID_TERM = 'mid_term', 'Mid Term'
        TERM_END = 'term_end', 'End of Term'
        ANNUAL = 'annual', 'Annual'

    name = models.CharField(max_length=100)
    term = models.ForeignKey(
        Term,
        on_delete=models.PROTECT,
        related_name='exams'
    )
    exam_type = models.CharField(
        max_length=20,
        choices=ExamType.choices,
        default=ExamType.TERM_END
    )
    classes = models.ManyToManyField(
        Class,
        blank=True,
        related_name='exams',
        help_text='Leave empty if the exam is written by every class'
    )
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    is_locked = models.BooleanField(
        default=False,
        help_text='When locked, marks for this term cannot be modified'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'exam'
        ordering = ['term', 'start_date', 'name']

    def __str__(self):
        return f"{self.name} - {self.term.name}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({'end_date': 'End date must be on or after the start date.'})


class GradingScheme(models.Model):
    """
    The components and weightages of one subject, for one class, in one term.

    Schemes are versioned: a new version supersedes the active one instead of
    editing components that may already carry marks.
    """
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='grading_schemes'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='grading_schemes'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='grading_schemes'
    )
    version = models.PositiveSmallIntegerField(default=1)
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='grading_schemes'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'grading_scheme'
        ordering = ['class_assigned', 'subject', 'term', '-version']
        unique_together = ['class_assigned', 'subject', 'term', 'version']
        constraints = [
            models.UniqueConstraint(
                fields=['class_assigned', 'subject', 'term'],
                condition=models.Q(is_active=True),
                name='one_active_scheme_per_subject_term',
            ),
        ]

    def __str__(self):
        return f"{self.subject} / {self.class_assigned} / {self.term.name} (v{self.version})"

    @property
    def total_weightage(self):
        return sum((c.weightage_percent for c in self.components.all()), Decimal('0'))

    @property
    def has_marks(self):
        return MarkEntry.objects.filter(component__scheme=self).exists()

    def supersede(self, user=None):
        """
        Deactivate this scheme and return a new active version with copies of
        its components. Marks stay attached to the old components.
        """
        with transaction.atomic():
            self.is_active = False
            self.save(update_fields=['is_active'])
            latest = GradingScheme.objects.filter(
                class_assigned_id=self.class_assigned_id,
                subject_id=self.subject_id,
                term_id=self.term_id,
            ).order_by('-version').first()
            new_scheme = GradingScheme.objects.create(
                class_assigned_id=self.class_assigned_id,
                subject_id=self.subject_id,
                term_id=self.term_id,
                version=latest.version + 1,
                created_by=user,
            )
            GradingComponent.objects.bulk_create([
                GradingComponent(
                    scheme=new_scheme,
                    assessment_id=c.assessment_id,
                    name=c.name,
                    abbreviation=c.abbreviation,
                    max_marks=c.max_marks,
                    weightage_percent=c.weightage_percent,
                )
                for c in self.components.all()
            ])
        return new_scheme


class GradingComponent(models.Model):
    """One scored part of a grading scheme, with its max marks and weightage."""
    scheme = models.ForeignKey(
        GradingScheme,
        on_delete=models.CASCADE,
        related_name='components'
    )
    assessment = models.ForeignKey(
        AssessmentComponent,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='scheme_entries',
        help_text='Library entry this part was created from'
    )
    name = models.CharField(max_length=100)
    abbreviation = models.CharField(max_length=20, blank=True)
    max_marks = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )
    weightage_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Share of the subject's weighted score, in percent"
    )
    is_locked = models.BooleanField(
        default=False,
        help_text='When locked, marks for this component cannot be modified'
    )
    locked_at = models.DateTimeField(null=True, blank=True)
    locked_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='locked_components'
    )

    class Meta:
        db_table = 'grading_component'
        ordering = ['scheme', 'id']

    def __str__(self):
        return f"{self.name} ({self.max_marks} marks, {self.weightage_percent}%)"

    def clean(self):
        if self.weightage_percent is None or not self.scheme_id:
            return
        siblings = GradingComponent.objects.filter(scheme_id=self.scheme_id).exclude(pk=self.pk)
        total = sum((c.weightage_percent for c in siblings), Decimal('0')) + self.weightage_percent
        if total > 100:
            raise ValidationError({
                'weightage_percent': f'Component weightages for this scheme would total {total}%, above 100%.'
            })

    def save(self, *args, **kwargs):
        if self.assessment_id and not self.name:
            self.name = self.assessment.name
            self.abbreviation = self.abbreviation or self.assessment.abbreviation
        super().save(*args, **kwargs)

    def lock(self, user):
        self.is_locked = True
        self.locked_at = timezone.now()
        self.locked_by = user
        self.save(update_fields=['is_locked', 'locked_at', 'locked_by'])

    def unlock(self):
        self.is_locked = False
        self.locked_at = None
        self.locked_by = None
        self.save(update_fields=['is_locked', 'locked_at', 'locked_by'])


class MarkEntry(models.Model):
    """One student's result for one grading component."""
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='mark_entries'
    )
    component = models.ForeignKey(
        GradingComponent,
        on_delete=models.CASCADE,
        related_name='mark_entries'
    )
    marks_obtained = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0)],
    )
    attendance = models.CharField(
        max_length=3,
        choices=ATTENDANCE_CHOICES,
        default=PRESENT,
        help_text='Any code other than P means the marks are ignored'
    )
    entered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='mark_entries'
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'mark_entry'
        unique_together = ['student', 'component']
        indexes = [
            models.Index(fields=['component', 'student'], name='mark_entry_component_idx'),
        ]

    def __str__(self):
        value = self.marks_obtained if self.attendance == PRESENT else self.attendance
        return f"{self.student} - {self.component.name}: {value}"

    def clean(self):
        if (self.marks_obtained is not None and self.component_id
                and self.marks_obtained > self.component.max_marks):
            raise ValidationError({
                'marks_obtained': f'Marks cannot exceed {self.component.max_marks}.'
            })


class MarkAuditLog(models.Model):
    """
    Audit log for mark changes. Tracks who changed what and when.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    ACTION_CHOICES = [
        ('CREATE', 'Created'),
        ('UPDATE', 'Updated'),
        ('DELETE', 'Deleted'),
    ]

    mark_entry = models.ForeignKey(
        MarkEntry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs'
    )
    # Kept separately so the history survives deleted entries
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='mark_audit_logs'
    )
    component = models.ForeignKey(
        GradingComponent,
        on_delete=models.CASCADE,
        related_name='mark_audit_logs'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name='mark_audit_logs'
    )

    action = models.CharField(max_length=10, choices=ACTION_CHOICES)
    old_marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    new_marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    old_attendance = models.CharField(max_length=3, blank=True)
    new_attendance = models.CharField(max_length=3, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'mark_audit_log'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.action} {self.student_id}/{self.component_id} by {self.user}"


class GradingSystem(models.Model):
    """A named grading scale (e.g. CBSE 9-point) made of percentage bands."""
    name = models.CharField(
        max_length=100,
        unique=True,
        help_text='Name of the grading system (e.g., CBSE Scholastic)'
    )
    description = models.TextField(blank=True)
    is_default = models.BooleanField(
        default=False,
        help_text='Used for result sheets that do not name a grading system'
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'grading_system'
        ordering = ['name']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        if self.is_default:
            GradingSystem.objects.filter(is_default=True).exclude(pk=self.pk).update(is_default=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_default(cls):
        return cls.objects.filter(is_default=True, is_active=True).first()


class GradeBand(models.Model):
    """A grade within a grading system (e.g., A1 = 91-100)."""
    grading_system = models.ForeignKey(
        GradingSystem,
        on_delete=models.CASCADE,
        related_name='bands'
    )
    grade_label = models.CharField(max_length=10)
    min_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    max_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    remark = models.CharField(max_length=100, blank=True)

    class Meta:
        db_table = 'grade_band'
        ordering = ['grading_system', '-min_percent']
        unique_together = ['grading_system', 'grade_label']

    def __str__(self):
        return f"{self.grade_label} ({self.min_percent}-{self.max_percent})"

    def clean(self):
        if (self.min_percent is not None and self.max_percent is not None
                and self.min_percent > self.max_percent):
            raise ValidationError({'max_percent': 'Maximum must not be below the minimum.'})
