"""
Tests for the academics app: classes, sections and subject allocation.
"""
from django.db import IntegrityError
from django.test import TestCase

from academics.models import Class, Section, Subject, ClassSubject


class ClassStructureTests(TestCase):
    """Classes own sections and subject allocations."""

    def setUp(self):
        self.class_obj = Class.objects.create(name='Basic 7', level_number=7)
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        self.english = Subject.objects.create(name='English Language', short_name='ENG')

    def test_sections_belong_to_class(self):
        Section.objects.create(class_assigned=self.class_obj, name='A')
        Section.objects.create(class_assigned=self.class_obj, name='B')
        self.assertEqual(
            list(self.class_obj.sections.values_list('name', flat=True)),
            ['A', 'B']
        )
        self.assertEqual(str(self.class_obj.sections.first()), 'Basic 7 A')

    def test_duplicate_section_rejected(self):
        Section.objects.create(class_assigned=self.class_obj, name='A')
        with self.assertRaises(IntegrityError):
            Section.objects.create(class_assigned=self.class_obj, name='A')

    def test_subject_allocation_order(self):
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.math, display_order=2)
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.english, display_order=1)
        names = [cs.subject.name for cs in self.class_obj.subjects.all()]
        self.assertEqual(names, ['English Language', 'Mathematics'])

    def test_subject_allocated_once_per_class(self):
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.math)
        with self.assertRaises(IntegrityError):
            ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.math)
