from django.db import models
from django.utils.translation import gettext_lazy as _


class StudentQuerySet(models.QuerySet):

    def active(self):
        return self.filter(status=Student.Status.ACTIVE)

    def in_class(self, class_id, section_id=None):
        """Students of a class (optionally one section) in result-sheet order."""
        qs = self.filter(current_class_id=class_id)
        if section_id:
            qs = qs.filter(section_id=section_id)
        return qs.order_by('roll_number', 'last_name', 'first_name')


class Student(models.Model):
    """
    Represents a student enrolled in the school.
    """
    class Status(models.TextChoices):
        ACTIVE = 'active', _('Active')
        GRADUATED = 'graduated', _('Graduated')
        WITHDRAWN = 'withdrawn', _('Withdrawn')
        TRANSFERRED = 'transferred', _('Transferred')

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    other_names = models.CharField(max_length=100, blank=True)

    admission_number = models.CharField(
        max_length=50,
        unique=True,
        help_text="Unique student ID/admission number"
    )
    roll_number = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Position of the student on class registers and result sheets"
    )

    current_class = models.ForeignKey(
        'academics.Class',
        on_delete=models.PROTECT,
        related_name='students',
        null=True,
        blank=True
    )
    section = models.ForeignKey(
        'academics.Section',
        on_delete=models.SET_NULL,
        related_name='students',
        null=True,
        blank=True
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = StudentQuerySet.as_manager()

    class Meta:
        ordering = ['last_name', 'first_name']
        verbose_name = "Student"
        verbose_name_plural = "Students"
        indexes = [
            models.Index(fields=['current_class', 'section', 'roll_number'], name='student_class_roll_idx'),
        ]

    def __str__(self):
        return f"{self.full_name} ({self.admission_number})"

    @property
    def full_name(self):
        names = [self.first_name]
        if self.other_names:
            names.append(self.other_names)
        names.append(self.last_name)
        return ' '.join(names)
