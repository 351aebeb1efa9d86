from decimal import Decimal

from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models


class AcademicYear(models.Model):
    """
    Represents an academic year (e.g., 2024/2025).
    """
    name = models.CharField(
        max_length=50,
        help_text="e.g., 2024/2025 Academic Year"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(
        default=False,
        help_text="Only one academic year can be current at a time"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_date']
        verbose_name = "Academic Year"
        verbose_name_plural = "Academic Years"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Ensure only one academic year is current
        if self.is_current:
            AcademicYear.objects.filter(is_current=True).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls):
        return cls.objects.filter(is_current=True).first()


class Term(models.Model):
    """
    A grading period within an academic year.

    `final_weightage` is this term's share of a multi-term final result
    (e.g. 40 for Term 1 and 60 for Term 2). It may be left blank when the
    share is always supplied with the report request.
    """
    PERIOD_NUMBER_CHOICES = [
        (1, 'First'),
        (2, 'Second'),
        (3, 'Third'),
        (4, 'Fourth'),
    ]

    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.CASCADE,
        related_name='terms'
    )
    name = models.CharField(
        max_length=50,
        help_text="e.g., Term 1, Semester One"
    )
    term_number = models.PositiveSmallIntegerField(
        choices=PERIOD_NUMBER_CHOICES,
        default=1,
        verbose_name="Period Number"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(
        default=False,
        help_text="Only one term can be current at a time"
    )
    final_weightage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text="Share of this term in the final (multi-term) result, in percent"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year', 'term_number']
        verbose_name = "Term"
        verbose_name_plural = "Terms"
        unique_together = ['academic_year', 'term_number']

    def __str__(self):
        return f"{self.name} - {self.academic_year.name}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({'end_date': 'End date must be on or after the start date.'})
        if self.final_weightage is None or not self.academic_year_id:
            return
        siblings = Term.objects.filter(
            academic_year_id=self.academic_year_id,
            final_weightage__isnull=False
        ).exclude(pk=self.pk)
        total = sum((t.final_weightage for t in siblings), Decimal('0')) + self.final_weightage
        if total > 100:
            raise ValidationError({
                'final_weightage': f'Term shares for this academic year would total {total}%, above 100%.'
            })

    def save(self, *args, **kwargs):
        # Ensure only one term is current
        if self.is_current:
            Term.objects.filter(is_current=True).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls):
        return cls.objects.filter(is_current=True).select_related('academic_year').first()


class SchoolSettings(models.Model):
    """
    Singleton holding the school identity printed on result sheets.
    """
    display_name = models.CharField(max_length=100, blank=True)
    motto = models.CharField(max_length=200, blank=True)
    address = models.TextField(blank=True)
    results_email_from = models.EmailField(
        blank=True,
        help_text="Sender address for emailed result summaries"
    )

    class Meta:
        verbose_name = "School Settings"
        verbose_name_plural = "School Settings"

    def __str__(self):
        return "School Profile & Settings"

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)
        cache.delete('school_profile')

    @classmethod
    def load(cls):
        profile = cache.get('school_profile')
        if profile is None:
            profile, created = cls.objects.get_or_create(pk=1)
            cache.set('school_profile', profile, 60 * 60 * 24)
        return profile
