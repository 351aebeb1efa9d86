from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.urls import reverse

from academics.models import Class, Subject, ClassSubject
from core.models import AcademicYear, Term, SchoolSettings
from core.permissions import can_enter_marks, get_client_ip


class AcademicYearTests(TestCase):
    """Tests for AcademicYear current-year handling."""

    def test_only_one_current_year(self):
        first = AcademicYear.objects.create(
            name='2023/2024', start_date=date(2023, 9, 1),
            end_date=date(2024, 7, 31), is_current=True
        )
        AcademicYear.objects.create(
            name='2024/2025', start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31), is_current=True
        )
        first.refresh_from_db()
        self.assertFalse(first.is_current)
        self.assertEqual(AcademicYear.get_current().name, '2024/2025')


class TermTests(TestCase):
    """Tests for Term validation and final-result shares."""

    def setUp(self):
        self.year = AcademicYear.objects.create(
            name='2024/2025', start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31), is_current=True
        )

    def _create_term(self, number, share=None, **kwargs):
        return Term.objects.create(
            academic_year=self.year,
            name=f'Term {number}',
            term_number=number,
            start_date=date(2024, 9, 1),
            end_date=date(2024, 12, 15),
            final_weightage=share,
            **kwargs
        )

    def test_str_includes_year(self):
        term = self._create_term(1)
        self.assertEqual(str(term), 'Term 1 - 2024/2025')

    def test_get_current(self):
        self._create_term(1, is_current=True)
        second = self._create_term(2, is_current=True)
        self.assertEqual(Term.get_current(), second)

    def test_shares_within_year_may_total_100(self):
        self._create_term(1, share=Decimal('40'))
        term2 = Term(
            academic_year=self.year, name='Term 2', term_number=2,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4),
            final_weightage=Decimal('60')
        )
        term2.full_clean()

    def test_shares_above_100_rejected(self):
        self._create_term(1, share=Decimal('50'))
        term2 = Term(
            academic_year=self.year, name='Term 2', term_number=2,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4),
            final_weightage=Decimal('60')
        )
        with self.assertRaises(ValidationError) as ctx:
            term2.full_clean()
        self.assertIn('final_weightage', ctx.exception.message_dict)

    def test_end_before_start_rejected(self):
        term = Term(
            academic_year=self.year, name='Term 1', term_number=1,
            start_date=date(2025, 1, 6), end_date=date(2024, 12, 1)
        )
        with self.assertRaises(ValidationError):
            term.full_clean()


class SchoolSettingsTests(TestCase):
    """Tests for the SchoolSettings singleton."""

    def setUp(self):
        cache.clear()

    def test_load_creates_singleton(self):
        profile = SchoolSettings.load()
        self.assertEqual(profile.pk, 1)
        self.assertEqual(SchoolSettings.objects.count(), 1)

    def test_save_always_uses_pk_one(self):
        SchoolSettings.objects.create(display_name='Accra Academy')
        SchoolSettings(display_name='Renamed').save()
        self.assertEqual(SchoolSettings.objects.count(), 1)
        self.assertEqual(SchoolSettings.load().display_name, 'Renamed')


class PermissionTests(TestCase):
    """Role checks shared by the marks and results views."""

    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_school_admin(email='admin@school.test', password='pass')
        self.teacher = User.objects.create_teacher(email='teacher@school.test', password='pass')
        self.plain = User.objects.create_user(email='parent@school.test', password='pass')
        self.class_obj = Class.objects.create(name='Basic 1')
        self.subject = Subject.objects.create(name='Reading', short_name='RD')
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.subject, teacher=self.teacher)

    def test_can_enter_marks(self):
        self.assertTrue(can_enter_marks(self.admin, self.class_obj.pk, self.subject.pk))
        self.assertTrue(can_enter_marks(self.teacher, self.class_obj.pk, self.subject.pk))
        self.assertFalse(can_enter_marks(self.plain, self.class_obj.pk, self.subject.pk))

    def test_get_client_ip_prefers_forwarded_header(self):
        request = RequestFactory().get('/', HTTP_X_FORWARDED_FOR='203.0.113.5, 10.0.0.1')
        self.assertEqual(get_client_ip(request), '203.0.113.5')
        self.assertEqual(get_client_ip(RequestFactory().get('/')), '127.0.0.1')

    def test_plain_user_denied_results(self):
        self.client.force_login(self.plain)
        response = self.client.get(reverse('results:class_exam_subjects'))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['type'], 'forbidden')
