"""
Tests for exams: grading scheme models, marks entry, marks sheet import/export and locking.
"""
import json
from datetime import date
from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

import openpyxl

from django.contrib.admin.sites import site
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import IntegrityError
from django.test import RequestFactory, TestCase
from django.urls import reverse

from academics.models import Class, ClassSubject, Subject
from core.models import AcademicYear, Term
from results.export import XLSX_CONTENT_TYPE
from results.exceptions import (
    ForbiddenError, LockedStateError, NotFoundError, ValidationError
)
from students.models import Student

from . import import_export, services
from .admin import GradingComponentAdmin, GradingComponentInline
from .models import (
    AssessmentComponent, Exam, GradingComponent, GradingScheme, GradingSystem,
    MarkAuditLog, MarkEntry,
)

User = get_user_model()


class ExamsFixtureMixin:

    def _create_fixtures(self):
        self.admin = User.objects.create_school_admin(email='admin@school.test', password='pass')
        self.teacher = User.objects.create_teacher(email='teacher@school.test', password='pass')
        self.other_teacher = User.objects.create_teacher(email='other@school.test', password='pass')

        year = AcademicYear.objects.create(
            name='2024/2025', start_date=date(2024, 9, 1), end_date=date(2025, 7, 31)
        )
        self.term = Term.objects.create(
            academic_year=year, name='Term 1', term_number=1,
            start_date=date(2024, 9, 1), end_date=date(2024, 12, 20)
        )
        self.class_obj = Class.objects.create(name='Basic 8', level_number=8)
        self.other_class = Class.objects.create(name='Basic 9', level_number=9)
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.math, teacher=self.teacher)

        self.exam = Exam.objects.create(name='Mid Term', term=self.term, exam_type=Exam.ExamType.MID_TERM)
        self.scheme = GradingScheme.objects.create(
            class_assigned=self.class_obj, subject=self.math, term=self.term
        )
        self.test1 = GradingComponent.objects.create(
            scheme=self.scheme, name='Class Test', abbreviation='CT',
            max_marks=Decimal('20'), weightage_percent=Decimal('30')
        )
        self.paper = GradingComponent.objects.create(
            scheme=self.scheme, name='Paper', abbreviation='P1',
            max_marks=Decimal('100'), weightage_percent=Decimal('70')
        )
        self.student = Student.objects.create(
            first_name='Yaw', last_name='Asante', admission_number='B8-001',
            roll_number=1, current_class=self.class_obj
        )
        self.outsider = Student.objects.create(
            first_name='Abena', last_name='Ofori', admission_number='B9-001',
            roll_number=1, current_class=self.other_class
        )


class GradingSchemeModelTests(ExamsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    def test_total_weightage(self):
        self.assertEqual(self.scheme.total_weightage, Decimal('100'))

    def test_component_weightage_above_hundred_rejected(self):
        extra = GradingComponent(
            scheme=self.scheme, name='Project', max_marks=Decimal('10'), weightage_percent=Decimal('5')
        )
        with self.assertRaises(DjangoValidationError):
            extra.clean()

    def test_one_active_scheme_per_subject_term(self):
        with self.assertRaises(IntegrityError):
            GradingScheme.objects.create(
                class_assigned=self.class_obj, subject=self.math, term=self.term, version=2
            )

    def test_supersede_copies_components(self):
        new_scheme = self.scheme.supersede(self.admin)
        self.scheme.refresh_from_db()
        self.assertFalse(self.scheme.is_active)
        self.assertTrue(new_scheme.is_active)
        self.assertEqual(new_scheme.version, 2)
        self.assertEqual(
            list(new_scheme.components.values_list('name', flat=True)),
            ['Class Test', 'Paper']
        )

    def test_component_takes_library_name(self):
        library = AssessmentComponent.objects.create(name='Unit Test 1', abbreviation='UT1')
        scheme = GradingScheme.objects.create(
            class_assigned=self.other_class, subject=self.math, term=self.term
        )
        component = GradingComponent.objects.create(
            scheme=scheme, assessment=library, max_marks=Decimal('25'), weightage_percent=Decimal('20')
        )
        self.assertEqual(component.name, 'Unit Test 1')
        self.assertEqual(component.abbreviation, 'UT1')

    def test_marks_above_maximum_fail_model_validation(self):
        entry = MarkEntry(student=self.student, component=self.test1, marks_obtained=Decimal('25'))
        with self.assertRaises(DjangoValidationError):
            entry.clean()

    def test_single_default_grading_system(self):
        first = GradingSystem.objects.create(name='Old', is_default=True)
        second = GradingSystem.objects.create(name='New', is_default=True)
        first.refresh_from_db()
        self.assertFalse(first.is_default)
        self.assertEqual(GradingSystem.get_default(), second)


class GradingSchemeAdminTests(ExamsFixtureMixin, TestCase):
    """Components that carry marks are changed by superseding, not by editing."""

    def setUp(self):
        self._create_fixtures()
        self.request = RequestFactory().get('/admin/')
        self.request.user = self.admin
        self.inline = GradingComponentInline(GradingScheme, site)
        self.component_admin = GradingComponentAdmin(GradingComponent, site)

    def test_scoring_fields_editable_before_marks(self):
        readonly = self.inline.get_readonly_fields(self.request, self.scheme)
        self.assertNotIn('max_marks', readonly)
        self.assertNotIn('weightage_percent', readonly)

    def test_scoring_fields_frozen_once_marks_exist(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, marks_obtained=Decimal('12'))
        readonly = self.inline.get_readonly_fields(self.request, self.scheme)
        self.assertIn('max_marks', readonly)
        self.assertIn('weightage_percent', readonly)
        self.assertFalse(self.inline.has_add_permission(self.request, self.scheme))
        self.assertIn('max_marks', self.component_admin.get_readonly_fields(self.request, self.test1))

    def test_superseded_scheme_frozen(self):
        self.scheme.supersede(self.admin)
        self.scheme.refresh_from_db()
        self.assertIn('max_marks', self.inline.get_readonly_fields(self.request, self.scheme))

    def test_components_not_deleted_inline(self):
        self.assertFalse(self.inline.can_delete)

    def test_component_with_marks_cannot_be_deleted(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, attendance='A')
        self.assertFalse(self.component_admin.has_delete_permission(self.request, self.test1))


class SaveMarksTests(ExamsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    def _entry(self, component, marks=None, attendance='P', student=None):
        return {
            'student_id': (student or self.student).pk,
            'component_id': component.pk,
            'marks_obtained': marks,
            'attendance': attendance,
        }

    def test_creates_entries_with_audit(self):
        counts = services.save_marks(
            [self._entry(self.test1, '18.5'), self._entry(self.paper, attendance='A')],
            self.teacher, ip_address='10.0.0.1', user_agent='tests'
        )
        self.assertEqual(counts['created'], 2)
        entry = MarkEntry.objects.get(student=self.student, component=self.test1)
        self.assertEqual(entry.marks_obtained, Decimal('18.5'))
        self.assertEqual(entry.entered_by, self.teacher)
        self.assertEqual(MarkEntry.objects.get(component=self.paper).attendance, 'A')

        log = MarkAuditLog.objects.get(component=self.test1)
        self.assertEqual(log.action, 'CREATE')
        self.assertEqual(log.ip_address, '10.0.0.1')

    def test_update_and_delete_are_audited(self):
        services.save_marks([self._entry(self.test1, '10')], self.teacher)
        counts = services.save_marks([self._entry(self.test1, '12')], self.teacher)
        self.assertEqual(counts['updated'], 1)
        update = MarkAuditLog.objects.get(action='UPDATE')
        self.assertEqual((update.old_marks, update.new_marks), (Decimal('10'), Decimal('12')))

        counts = services.save_marks([self._entry(self.test1, '')], self.teacher)
        self.assertEqual(counts['deleted'], 1)
        self.assertFalse(MarkEntry.objects.filter(component=self.test1).exists())
        self.assertTrue(MarkAuditLog.objects.filter(action='DELETE', student=self.student).exists())

    def test_unchanged_marks_not_rewritten(self):
        services.save_marks([self._entry(self.test1, '10')], self.teacher)
        counts = services.save_marks([self._entry(self.test1, '10.00')], self.teacher)
        self.assertEqual(counts['unchanged'], 1)
        self.assertEqual(MarkAuditLog.objects.count(), 1)

    def test_invalid_entry_rejects_whole_batch(self):
        with self.assertRaises(ValidationError) as ctx:
            services.save_marks(
                [self._entry(self.paper, '80'), self._entry(self.test1, '21')], self.teacher
            )
        self.assertEqual(ctx.exception.context['component_id'], self.test1.pk)
        self.assertFalse(MarkEntry.objects.exists())

    def test_marks_beyond_two_decimals_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            services.save_marks([self._entry(self.test1, '12.345')], self.admin)
        self.assertEqual(ctx.exception.context['student_id'], self.student.pk)
        self.assertEqual(ctx.exception.context['component_id'], self.test1.pk)
        self.assertFalse(MarkEntry.objects.exists())
        self.assertFalse(MarkAuditLog.objects.exists())

    def test_superseded_scheme_component_rejected(self):
        self.scheme.supersede(self.admin)
        with self.assertRaises(ValidationError) as ctx:
            services.save_marks([self._entry(self.test1, '10')], self.admin)
        self.assertEqual(ctx.exception.context['component_id'], self.test1.pk)
        self.assertFalse(MarkEntry.objects.exists())

    def test_marks_dropped_for_absent_student(self):
        services.save_marks([self._entry(self.test1, '15', attendance='ML')], self.teacher)
        entry = MarkEntry.objects.get(component=self.test1)
        self.assertIsNone(entry.marks_obtained)
        self.assertEqual(entry.attendance, 'ML')

    def test_locked_component_rejected(self):
        self.test1.lock(self.admin)
        with self.assertRaises(LockedStateError):
            services.save_marks([self._entry(self.test1, '10')], self.teacher)
        self.assertFalse(MarkEntry.objects.exists())

    def test_locked_exam_rejected(self):
        self.exam.is_locked = True
        self.exam.save()
        with self.assertRaises(LockedStateError):
            services.save_marks([self._entry(self.paper, '50')], self.admin)

    def test_exam_locked_for_other_class_only(self):
        self.exam.is_locked = True
        self.exam.save()
        self.exam.classes.add(self.other_class)
        counts = services.save_marks([self._entry(self.paper, '50')], self.admin)
        self.assertEqual(counts['created'], 1)

    def test_unassigned_teacher_forbidden(self):
        with self.assertRaises(ForbiddenError):
            services.save_marks([self._entry(self.test1, '10')], self.other_teacher)

    def test_student_from_another_class_rejected(self):
        with self.assertRaises(ValidationError):
            services.save_marks([self._entry(self.test1, '10', student=self.outsider)], self.admin)

    def test_unknown_component(self):
        with self.assertRaises(NotFoundError):
            services.save_marks([{'student_id': self.student.pk, 'component_id': 9999}], self.admin)

    def test_duplicate_entries_rejected(self):
        with self.assertRaises(ValidationError):
            services.save_marks([self._entry(self.test1, '1'), self._entry(self.test1, '2')], self.admin)

    def test_empty_batch_rejected(self):
        with self.assertRaises(ValidationError):
            services.save_marks([], self.admin)


class MarksViewTests(ExamsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    def _post(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type='application/json')

    def test_marks_sheet(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, marks_obtained=Decimal('14'))
        self.client.force_login(self.teacher)
        response = self.client.get(reverse('exams:marks'), {
            'class_id': self.class_obj.pk, 'subject_id': self.math.pk, 'exam_id': self.exam.pk
        })
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['can_edit'])
        self.assertEqual([c['abbreviation'] for c in data['components']], ['CT', 'P1'])
        marks = data['students'][0]['marks']
        self.assertEqual(marks[str(self.test1.pk)], {'marks_obtained': '14.00', 'attendance': 'P'})
        self.assertEqual(marks[str(self.paper.pk)], {'marks_obtained': None, 'attendance': 'P'})

    def test_save_endpoint(self):
        self.client.force_login(self.teacher)
        response = self._post(reverse('exams:marks_save'), {'entries': [
            {'student_id': self.student.pk, 'component_id': self.test1.pk, 'marks_obtained': 17}
        ]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['created'], 1)

    def test_save_endpoint_locked(self):
        self.paper.lock(self.admin)
        self.client.force_login(self.teacher)
        response = self._post(reverse('exams:marks_save'), {'entries': [
            {'student_id': self.student.pk, 'component_id': self.paper.pk, 'marks_obtained': 50}
        ]})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['type'], 'locked')

    def test_save_endpoint_out_of_range(self):
        self.client.force_login(self.teacher)
        response = self._post(reverse('exams:marks_save'), {'entries': [
            {'student_id': self.student.pk, 'component_id': self.test1.pk, 'marks_obtained': 30}
        ]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['context']['student_id'], self.student.pk)

    def test_lock_requires_admin(self):
        self.client.force_login(self.teacher)
        response = self._post(reverse('exams:component_lock', args=[self.test1.pk]))
        self.assertEqual(response.status_code, 403)
        self.test1.refresh_from_db()
        self.assertFalse(self.test1.is_locked)

    def test_lock_and_unlock(self):
        self.client.force_login(self.admin)
        response = self._post(reverse('exams:component_lock', args=[self.test1.pk]))
        self.assertTrue(response.json()['is_locked'])
        self.test1.refresh_from_db()
        self.assertEqual(self.test1.locked_by, self.admin)

        response = self._post(reverse('exams:component_unlock', args=[self.test1.pk]))
        self.assertFalse(response.json()['is_locked'])
        self.test1.refresh_from_db()
        self.assertIsNone(self.test1.locked_at)

    def test_lock_unknown_component(self):
        self.client.force_login(self.admin)
        response = self._post(reverse('exams:component_lock', args=[9999]))
        self.assertEqual(response.status_code, 404)

    def test_exam_lock_toggle(self):
        self.client.force_login(self.admin)
        response = self._post(reverse('exams:exam_lock_toggle', args=[self.exam.pk]))
        self.assertTrue(response.json()['is_locked'])
        response = self._post(reverse('exams:exam_lock_toggle', args=[self.exam.pk]))
        self.assertFalse(response.json()['is_locked'])


class MarksImportExportTests(ExamsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()
        cache.clear()

    def _export(self):
        _, content = import_export.marks_sheet_workbook(self.class_obj.pk, self.math.pk, self.exam.pk)
        return openpyxl.load_workbook(BytesIO(content))

    def _upload(self, wb, name='marks.xlsx'):
        buffer = BytesIO()
        wb.save(buffer)
        return SimpleUploadedFile(name, buffer.getvalue(), content_type=XLSX_CONTENT_TYPE)

    def _import(self, upload, user=None, exam_id=None):
        return import_export.import_marks_workbook(
            upload, self.class_obj.pk, self.math.pk, exam_id or self.exam.pk, user or self.teacher
        )

    def test_export_prefills_stored_marks(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, marks_obtained=Decimal('14.5'))
        MarkEntry.objects.create(student=self.student, component=self.paper, attendance='A')
        wb = self._export()
        ws = wb['Marks']
        self.assertEqual(
            [cell.value for cell in ws[1]],
            ['Admission No', 'Roll No', 'Student Name', 'CT (/20.00)', 'P1 (/100.00)']
        )
        self.assertEqual([cell.value for cell in ws[2]], ['B8-001', 1, 'Yaw Asante', 14.5, 'A'])
        self.assertEqual(ws.max_row, 2)
        self.assertEqual(wb['_metadata'].sheet_state, 'hidden')

    def test_import_stores_edited_cells(self):
        wb = self._export()
        wb['Marks']['D2'] = 18
        wb['Marks']['E2'] = 'ml'
        counts = self._import(self._upload(wb))
        self.assertEqual(counts['created'], 2)
        self.assertEqual(counts['rows_processed'], 1)
        self.assertEqual(MarkEntry.objects.get(component=self.test1).marks_obtained, Decimal('18'))
        self.assertEqual(MarkEntry.objects.get(component=self.paper).attendance, 'ML')
        self.assertEqual(MarkAuditLog.objects.filter(action='CREATE').count(), 2)

    def test_unchanged_cells_skip_locks(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, marks_obtained=Decimal('14'))
        self.test1.lock(self.admin)
        wb = self._export()
        wb['Marks']['E2'] = 55
        counts = self._import(self._upload(wb))
        self.assertEqual((counts['created'], counts['unchanged']), (1, 1))

    def test_changed_locked_cell_rejects_file(self):
        self.test1.lock(self.admin)
        wb = self._export()
        wb['Marks']['D2'] = 10
        wb['Marks']['E2'] = 55
        with self.assertRaises(LockedStateError):
            self._import(self._upload(wb))
        self.assertFalse(MarkEntry.objects.exists())

    def test_invalid_cell_rejects_file(self):
        wb = self._export()
        wb['Marks']['D2'] = '12.345'
        wb['Marks']['E2'] = 80
        with self.assertRaises(ValidationError) as ctx:
            self._import(self._upload(wb))
        self.assertEqual(ctx.exception.context['component_id'], self.test1.pk)
        self.assertFalse(MarkEntry.objects.exists())

    def test_cleared_cell_removes_entry(self):
        MarkEntry.objects.create(student=self.student, component=self.test1, marks_obtained=Decimal('14'))
        wb = self._export()
        wb['Marks']['D2'] = None
        counts = self._import(self._upload(wb))
        self.assertEqual(counts['deleted'], 1)
        self.assertFalse(MarkEntry.objects.exists())

    def test_unknown_admission_number(self):
        wb = self._export()
        wb['Marks']['A2'] = 'B8-999'
        with self.assertRaises(ValidationError) as ctx:
            self._import(self._upload(wb))
        self.assertEqual(ctx.exception.context['row'], 2)

    def test_workbook_for_another_exam_rejected(self):
        other_exam = Exam.objects.create(name='End of Term', term=self.term)
        with self.assertRaises(ValidationError):
            self._import(self._upload(self._export()), exam_id=other_exam.pk)

    def test_workbook_older_than_scheme_rejected(self):
        wb = self._export()
        self.scheme.supersede(self.admin)
        with self.assertRaises(ValidationError):
            self._import(self._upload(wb))

    def test_non_excel_upload_rejected(self):
        with self.assertRaises(ValidationError):
            self._import(SimpleUploadedFile('marks.xlsx', b'not a workbook'))
        with self.assertRaises(ValidationError):
            self._import(SimpleUploadedFile('marks.csv', b'a,b'))
        with self.assertRaises(ValidationError):
            self._import(None)

    def test_unassigned_teacher_forbidden(self):
        with self.assertRaises(ForbiddenError):
            self._import(self._upload(self._export()), user=self.other_teacher)

    def test_export_endpoint(self):
        self.client.force_login(self.teacher)
        response = self.client.get(reverse('exams:marks_export'), {
            'class_id': self.class_obj.pk, 'subject_id': self.math.pk, 'exam_id': self.exam.pk
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], XLSX_CONTENT_TYPE)
        self.assertIn('.xlsx', response['Content-Disposition'])

    def test_import_endpoint(self):
        wb = self._export()
        wb['Marks']['D2'] = 17
        self.client.force_login(self.teacher)
        response = self.client.post(reverse('exams:marks_import'), {
            'file': self._upload(wb),
            'class_id': self.class_obj.pk,
            'subject_id': self.math.pk,
            'exam_id': self.exam.pk,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['created'], 1)
        self.assertEqual(response.json()['rows_processed'], 1)

    def test_import_endpoint_reports_bad_row(self):
        wb = self._export()
        wb['Marks']['D2'] = 25
        self.client.force_login(self.teacher)
        response = self.client.post(reverse('exams:marks_import'), {
            'file': self._upload(wb),
            'class_id': self.class_obj.pk,
            'subject_id': self.math.pk,
            'exam_id': self.exam.pk,
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['context']['student_id'], self.student.pk)

    @patch('exams.import_export.html_to_pdf', return_value=b'%PDF-1.4')
    def test_pdf_endpoint(self, mock_pdf):
        MarkEntry.objects.create(student=self.student, component=self.paper, attendance='ML')
        self.client.force_login(self.teacher)
        response = self.client.get(reverse('exams:marks_export_pdf'), {
            'class_id': self.class_obj.pk, 'subject_id': self.math.pk,
            'exam_id': self.exam.pk, 'orientation': 'landscape',
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        html, orientation = mock_pdf.call_args[0]
        self.assertEqual(orientation, 'landscape')
        self.assertIn('Yaw Asante', html)
        self.assertIn('ML', html)
