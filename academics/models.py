from django.conf import settings
from django.db import models


class Class(models.Model):
    """
    A class (grade level cohort) such as "Basic 7". Students are further
    split into sections (A, B, ...) that share the class's subjects and
    grading schemes.
    """
    name = models.CharField(
        max_length=50,
        unique=True,
        help_text="e.g., Basic 7, SHS 2 Science"
    )
    level_number = models.PositiveSmallIntegerField(
        default=1,
        help_text="1, 2, 3, etc. Used for ordering"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['level_number', 'name']
        verbose_name = "Class"
        verbose_name_plural = "Classes"

    def __str__(self):
        return self.name


class Section(models.Model):
    """A section of a class, e.g. "A" in Basic 7 A."""
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='sections'
    )
    name = models.CharField(
        max_length=5,
        help_text="A, B, C, etc."
    )

    class Meta:
        ordering = ['class_assigned', 'name']
        unique_together = ['class_assigned', 'name']

    def __str__(self):
        return f"{self.class_assigned.name} {self.name}"


class Subject(models.Model):
    """
    Represents a subject taught at the school.
    """
    name = models.CharField(
        max_length=100,
        help_text="e.g., Mathematics, English Language, Integrated Science"
    )
    short_name = models.CharField(
        max_length=20,
        help_text="e.g., MATH, ENG, INT SCI"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        verbose_name = "Subject"
        verbose_name_plural = "Subjects"

    def __str__(self):
        return self.name


class ClassSubject(models.Model):
    """
    Assigns a Subject to a Class, optionally with the teacher who enters its marks.
    A grading scheme can only be resolved for an assigned class-subject pair.
    """
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='subjects'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='class_allocations'
    )
    teacher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='subject_assignments'
    )
    display_order = models.PositiveSmallIntegerField(
        default=0,
        help_text="Column order of the subject on result sheets"
    )

    class Meta:
        ordering = ['display_order', 'subject__name']
        unique_together = ['class_assigned', 'subject']
        verbose_name = "Subject Allocation"
        verbose_name_plural = "Subject Allocations"

    def __str__(self):
        return f"{self.subject.name} - {self.class_assigned.name}"
