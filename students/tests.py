from django.test import TestCase

from academics.models import Class, Section
from students.models import Student


class StudentQuerySetTests(TestCase):
    """Tests for class/section lookups used by result sheets."""

    def setUp(self):
        self.class_obj = Class.objects.create(name='Basic 8', level_number=8)
        self.section_a = Section.objects.create(class_assigned=self.class_obj, name='A')
        self.section_b = Section.objects.create(class_assigned=self.class_obj, name='B')

    def _create_student(self, admission, first, last, roll, section, **kwargs):
        return Student.objects.create(
            first_name=first,
            last_name=last,
            admission_number=admission,
            roll_number=roll,
            current_class=self.class_obj,
            section=section,
            **kwargs
        )

    def test_in_class_orders_by_roll_number(self):
        self._create_student('S003', 'Kofi', 'Mensah', 3, self.section_a)
        self._create_student('S001', 'Ama', 'Owusu', 1, self.section_a)
        self._create_student('S002', 'Yaw', 'Boateng', 2, self.section_b)

        ordered = list(Student.objects.in_class(self.class_obj.pk).values_list('admission_number', flat=True))
        self.assertEqual(ordered, ['S001', 'S002', 'S003'])

    def test_in_class_filters_section(self):
        self._create_student('S001', 'Ama', 'Owusu', 1, self.section_a)
        self._create_student('S002', 'Yaw', 'Boateng', 2, self.section_b)

        section_b = Student.objects.in_class(self.class_obj.pk, self.section_b.pk)
        self.assertEqual([s.admission_number for s in section_b], ['S002'])

    def test_active_excludes_withdrawn(self):
        self._create_student('S001', 'Ama', 'Owusu', 1, self.section_a)
        self._create_student('S002', 'Yaw', 'Boateng', 2, self.section_a, status=Student.Status.WITHDRAWN)
        self.assertEqual(Student.objects.active().count(), 1)

    def test_full_name(self):
        student = self._create_student('S001', 'Ama', 'Owusu', 1, self.section_a, other_names='Serwaa')
        self.assertEqual(student.full_name, 'Ama Serwaa Owusu')
        self.assertEqual(str(student), 'Ama Serwaa Owusu (S001)')
