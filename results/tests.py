"""
Tests for the results pipeline: resolver, normalizer, aggregation, formatter,
the summary service and its HTTP endpoints.
"""
import json
from datetime import date
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import SimpleTestCase, TestCase
from django.urls import reverse

from academics.models import Class, ClassSubject, Section, Subject
from core.models import AcademicYear, Term
from exams.models import (
    Exam, GradeBand, GradingComponent, GradingScheme, GradingSystem, MarkEntry
)
from students.models import Student

from .aggregation import aggregate, aggregate_summary, percentage
from .exceptions import ConfigurationError, NotFoundError, ValidationError
from .formatting import StudentInfo, SubjectGroup, format_number, format_report
from .grading import Band, GradingScale
from .normalizer import normalize, parse_marks
from .schemes import (
    ExamSelector, TermSelector, class_exam_subjects, resolve_components,
    resolve_term_components, resolve_term_shares,
)
from .selection import DisplayPreferences, SubjectSelection
from .services import SummaryRequest, build_summary
from .tasks import email_result_summary
from .types import Component, RawMarkEntry, SubjectTotals

User = get_user_model()

MATH = 10
ENGLISH = 11


def _component(component_id, max_marks, weightage, subject_id=MATH, term_id=1, abbreviation=''):
    return Component(
        component_id=component_id,
        subject_id=subject_id,
        term_id=term_id,
        name=f"Component {component_id}",
        abbreviation=abbreviation or f"C{component_id}",
        max_marks=Decimal(max_marks),
        weightage_percent=Decimal(weightage),
    )


def _scale():
    return GradingScale([
        Band('D', Decimal('0'), Decimal('39.99')),
        Band('C', Decimal('40'), Decimal('59.99')),
        Band('B', Decimal('60'), Decimal('79.99')),
        Band('A', Decimal('80'), Decimal('100')),
    ], name='Test')


def _run(raw, components, prefs=None, scale=None, shares=None, student_ids=None):
    prefs = prefs or DisplayPreferences()
    normalized = normalize(raw, components, student_ids)
    return aggregate(normalized, components, prefs, scale, shares)


# ============ Aggregation scenarios ============

class AggregationScenarioTests(SimpleTestCase):
    """Worked examples of raw and weighted totals."""

    def setUp(self):
        self.unit1 = _component(1, '20', '40', abbreviation='U1')
        self.unit2 = _component(2, '80', '60', abbreviation='U2')
        self.components = [self.unit1, self.unit2]

    def test_fully_scored_student(self):
        """18/20 at 40% plus 60/80 at 60% gives 36 + 45 = 81."""
        result = _run([RawMarkEntry(100, 1, '18'), RawMarkEntry(100, 2, '60')], self.components)
        math = result.students[0].subjects[MATH]
        self.assertEqual(math.raw_total, Decimal('78'))
        self.assertEqual(math.weighted_total, Decimal('81'))
        self.assertEqual(math.max_weightage, Decimal('100'))
        self.assertEqual(math.percentage_weighted, Decimal('81'))

    def test_absent_component_leaves_denominator(self):
        """An absent component is excluded, so the percentage is out of 40."""
        result = _run([RawMarkEntry(101, 1, '18'), RawMarkEntry(101, 2, None, 'A')], self.components)
        math = result.students[0].subjects[MATH]
        self.assertEqual(math.raw_total, Decimal('18'))
        self.assertEqual(math.weighted_total, Decimal('36'))
        self.assertEqual(math.max_weightage, Decimal('40'))
        self.assertEqual(math.max_raw, Decimal('20'))
        self.assertEqual(math.percentage_weighted, Decimal('90'))

    def test_scored_zero_differs_from_exempt(self):
        zero = _run([RawMarkEntry(1, 1, '18'), RawMarkEntry(1, 2, '0')], self.components)
        exempt = _run([RawMarkEntry(1, 1, '18'), RawMarkEntry(1, 2, None, 'ML')], self.components)
        self.assertEqual(zero.students[0].subjects[MATH].max_weightage, Decimal('100'))
        self.assertEqual(zero.students[0].subjects[MATH].percentage_weighted, Decimal('36'))
        self.assertEqual(exempt.students[0].subjects[MATH].percentage_weighted, Decimal('90'))

    def test_blank_marks_count_as_zero_in_denominator(self):
        result = _run([RawMarkEntry(1, 1, '18')], self.components)
        math = result.students[0].subjects[MATH]
        self.assertEqual(math.weighted_total, Decimal('36'))
        self.assertEqual(math.max_weightage, Decimal('100'))
        self.assertIsNone(math.components[2].marks)

    def test_all_exempt_gives_no_percentage(self):
        result = _run(
            [RawMarkEntry(1, 1, None, 'A'), RawMarkEntry(1, 2, None, 'L')],
            self.components, prefs=DisplayPreferences(include_grades=True), scale=_scale()
        )
        math = result.students[0].subjects[MATH]
        self.assertIsNone(math.percentage_weighted)
        self.assertIsNone(math.grade)
        self.assertIsNone(result.students[0].grand.percentage_raw)

    def test_two_terms_combined_by_share(self):
        """Term shares 40/60 with term scores 50 and 70 give 62."""
        term1 = _component(1, '100', '100', term_id=1)
        term2 = _component(2, '100', '100', term_id=2)
        result = _run(
            [RawMarkEntry(1, 1, '50'), RawMarkEntry(1, 2, '70')],
            [term1, term2],
            shares={1: Decimal('40'), 2: Decimal('60')},
        )
        math = result.students[0].subjects[MATH]
        self.assertEqual(math.weighted_total, Decimal('62'))
        self.assertEqual(math.max_weightage, Decimal('100'))
        self.assertEqual(math.raw_total, Decimal('120'))
        self.assertEqual(math.term_breakdown[1].weighted_total, Decimal('50'))
        self.assertEqual(math.term_breakdown[2].weighted_total, Decimal('70'))

    def test_multiple_terms_need_shares(self):
        term1 = _component(1, '100', '100', term_id=1)
        term2 = _component(2, '100', '100', term_id=2)
        with self.assertRaises(ConfigurationError):
            _run([RawMarkEntry(1, 1, '50')], [term1, term2])

    def test_grades_need_a_scale(self):
        with self.assertRaises(ConfigurationError):
            _run([RawMarkEntry(1, 1, '18')], self.components, prefs=DisplayPreferences(include_grades=True))

    def test_grand_totals_span_subjects(self):
        english = _component(3, '50', '100', subject_id=ENGLISH)
        result = _run(
            [RawMarkEntry(1, 1, '18'), RawMarkEntry(1, 2, '60'), RawMarkEntry(1, 3, '25')],
            self.components + [english],
            prefs=DisplayPreferences(include_grades=True), scale=_scale(),
        )
        grand = result.students[0].grand
        self.assertEqual(grand.total_raw, Decimal('103'))
        self.assertEqual(grand.total_weighted, Decimal('131'))
        self.assertEqual(grand.percentage_weighted, Decimal('65.5'))
        self.assertEqual(grand.grade_weighted, 'B')
        self.assertEqual(grand.percentage_raw, Decimal('103') / Decimal('150') * 100)

    def test_identical_inputs_give_identical_output(self):
        raw = [RawMarkEntry(1, 1, '17.5'), RawMarkEntry(1, 2, '61'), RawMarkEntry(2, 1, None, 'A')]
        first = _run(raw, self.components, student_ids=[1, 2])
        second = _run(list(raw), self.components, student_ids=[1, 2])
        self.assertEqual(first, second)

    def test_weighted_total_within_weightage(self):
        """A full score on an under-weighted scheme never exceeds its weightage sum."""
        components = [_component(1, '10', '30'), _component(2, '25', '50')]
        result = _run([RawMarkEntry(1, 1, '10'), RawMarkEntry(1, 2, '25')], components)
        self.assertEqual(result.students[0].subjects[MATH].weighted_total, Decimal('80'))

    def test_summary_grade_from_class_totals(self):
        totals = {MATH: SubjectTotals(Decimal('96'), Decimal('117'), Decimal('120'), Decimal('140'))}
        summary = aggregate_summary(totals, DisplayPreferences(include_grades=True), _scale())
        self.assertIsNone(summary.student_id)
        self.assertEqual(summary.subjects[MATH].grade, 'A')
        self.assertEqual(summary.grand.percentage_raw, Decimal('80'))
        self.assertEqual(summary.grand.grade_raw, 'A')

    def test_percentage_of_zero_maximum(self):
        self.assertIsNone(percentage(Decimal('0'), Decimal('0')))


# ============ Normalizer ============

class NormalizerTests(SimpleTestCase):

    def setUp(self):
        self.components = [_component(1, '20', '40'), _component(2, '80', '60')]

    def test_missing_pairs_are_blank_present(self):
        normalized = normalize([], self.components, [5, 6])
        self.assertEqual(len(normalized), 4)
        self.assertTrue(all(e.blank for e in normalized))
        self.assertEqual([(e.student_id, e.component_id) for e in normalized], [(5, 1), (5, 2), (6, 1), (6, 2)])

    def test_marks_above_maximum_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize([RawMarkEntry(5, 1, '21')], self.components)
        self.assertEqual(ctx.exception.context, {'student_id': 5, 'component_id': 1})

    def test_negative_marks_rejected(self):
        with self.assertRaises(ValidationError):
            normalize([RawMarkEntry(5, 1, '-1')], self.components)

    def test_marks_beyond_two_decimals_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_marks('12.345', self.components[0], student_id=5)
        self.assertEqual(ctx.exception.context, {'student_id': 5, 'component_id': 1})
        self.assertEqual(parse_marks('12.500', self.components[0]), Decimal('12.5'))

    def test_unknown_attendance_rejected(self):
        with self.assertRaises(ValidationError):
            normalize([RawMarkEntry(5, 1, None, 'Z')], self.components)

    def test_duplicate_entry_rejected(self):
        with self.assertRaises(ValidationError):
            normalize([RawMarkEntry(5, 1, '10'), RawMarkEntry(5, 1, '11')], self.components)

    def test_marks_ignored_when_not_present(self):
        normalized = normalize([RawMarkEntry(5, 1, '15', 'ACT')], self.components)
        self.assertTrue(normalized[0].exempt)
        self.assertIsNone(normalized[0].marks)

    def test_entries_outside_components_ignored(self):
        normalized = normalize([RawMarkEntry(5, 99, '500')], self.components, [5])
        self.assertEqual(len(normalized), 2)


# ============ Grading scale ============

class GradingScaleTests(SimpleTestCase):

    def test_lookup_uses_two_decimals(self):
        scale = _scale()
        self.assertEqual(scale.grade_for(Decimal('39.99')), 'D')
        self.assertEqual(scale.grade_for(Decimal('39.995')), 'C')
        self.assertEqual(scale.grade_for(Decimal('100')), 'A')
        self.assertIsNone(scale.grade_for(None))

    def test_gap_rejected(self):
        with self.assertRaises(ConfigurationError):
            GradingScale([Band('F', Decimal('0'), Decimal('39')), Band('P', Decimal('40'), Decimal('100'))])

    def test_overlap_rejected(self):
        with self.assertRaises(ConfigurationError):
            GradingScale([Band('F', Decimal('0'), Decimal('50')), Band('P', Decimal('50'), Decimal('100'))])

    def test_must_cover_full_range(self):
        with self.assertRaises(ConfigurationError):
            GradingScale([Band('P', Decimal('10'), Decimal('100'))])
        with self.assertRaises(ConfigurationError):
            GradingScale([Band('P', Decimal('0'), Decimal('90'))])
        with self.assertRaises(ConfigurationError):
            GradingScale([])

    def test_out_of_range_percentage(self):
        with self.assertRaises(ConfigurationError):
            _scale().grade_for(Decimal('120'))


# ============ Selection and preferences ============

class SelectionTests(SimpleTestCase):

    def test_component_under_two_terms_rejected(self):
        with self.assertRaises(ValidationError):
            SubjectSelection(MATH, {1: [5, 6], 2: [6]})

    def test_empty_selection_rejected(self):
        with self.assertRaises(ValidationError):
            SubjectSelection(MATH, {1: []})
        with self.assertRaises(ValidationError):
            SubjectSelection(MATH, {})

    def test_keys_normalized(self):
        selection = SubjectSelection('10', {'2': ['7'], '1': [5, '6']})
        self.assertEqual(selection.subject_id, 10)
        self.assertEqual(selection.term_ids, [1, 2])
        self.assertEqual(selection.component_ids, frozenset({5, 6, 7}))

    def test_from_payload_with_exam_term(self):
        selection = SubjectSelection.from_payload({'subject_id': 3, 'component_ids': [4]}, exam_term_id=9)
        self.assertEqual(selection.term_component_map, {9: frozenset({4})})

    def test_preferences_from_request(self):
        prefs = DisplayPreferences.from_request({
            'displayMode': 'both', 'decimalPoints': '1', 'rounding': 'floor',
            'sum': True, 'includeGrades': 'true', 'studentsPerPage': 15,
        })
        self.assertEqual(prefs.display_mode, 'both')
        self.assertEqual(prefs.decimal_points, 1)
        self.assertTrue(prefs.include_sum)
        self.assertTrue(prefs.include_grades)
        self.assertEqual(prefs.students_per_page, 15)

    def test_invalid_preferences_rejected(self):
        with self.assertRaises(ValidationError):
            DisplayPreferences(decimal_points=5)
        with self.assertRaises(ValidationError):
            DisplayPreferences(display_mode='percent')
        with self.assertRaises(ValidationError):
            DisplayPreferences(students_per_page=0)


# ============ Formatter ============

class FormattingTests(SimpleTestCase):

    def setUp(self):
        self.components = (_component(1, '20', '40', abbreviation='U1'), _component(2, '80', '60', abbreviation='U2'))
        self.groups = [SubjectGroup(MATH, 'Mathematics', self.components, {1: 'Term 1'})]
        raw = [
            RawMarkEntry(100, 1, '18'), RawMarkEntry(100, 2, '60'),
            RawMarkEntry(101, 1, '18'), RawMarkEntry(101, 2, None, 'A'),
            RawMarkEntry(102, 1, '10'),
        ]
        self.normalized = normalize(raw, list(self.components), [100, 101, 102])
        self.students = [StudentInfo(100, 1, 'Ama Mensah'), StudentInfo(101, 2, 'Kofi Boateng'), StudentInfo(102, 3, 'Esi Owusu')]

    def _report(self, **prefs):
        prefs = DisplayPreferences(**prefs)
        scale = _scale() if prefs.include_grades else None
        result = aggregate(self.normalized, list(self.components), prefs, scale)
        totals = {MATH: sum((s.subjects[MATH].totals for s in result.students), SubjectTotals())}
        result = result.__class__(result.students, aggregate_summary(totals, prefs, scale))
        return format_report(result, self.groups, prefs, self.students)

    def test_format_number_rounding(self):
        self.assertEqual(format_number(Decimal('81.7'), 0, 'floor'), '81')
        self.assertEqual(format_number(Decimal('81.7'), 0, 'ceiling'), '82')
        self.assertEqual(format_number(Decimal('81.25'), 1, 'none'), '81.3')
        self.assertEqual(format_number(Decimal('81.24'), 1, 'ceiling'), '81.3')
        self.assertEqual(format_number(Decimal('3'), 2), '3.00')
        self.assertEqual(format_number(None, 2), '')

    def test_columns(self):
        report = self._report(include_sum=True, include_grades=True)
        self.assertEqual(
            [c.label for c in report.columns],
            ['U1', 'U2', 'Total', 'Grade', 'Marks', '%age', 'Grade']
        )
        self.assertEqual([(g.label, g.span) for g in report.header_groups], [('Mathematics', 4), ('Grand Total', 3)])
        self.assertEqual(report.columns[0].weightage, '40.00')
        self.assertEqual(report.header_groups[0].weightage, '100.00')

    def test_component_weightage_uses_report_decimals(self):
        components = (_component(1, '20', '12.5'), _component(2, '80', '87.5'))
        groups = [SubjectGroup(MATH, 'Mathematics', components, {1: 'Term 1'})]
        prefs = DisplayPreferences(include_sum=True, decimal_points=1)
        result = aggregate(normalize([RawMarkEntry(1, 1, '10')], list(components)), list(components), prefs)
        report = format_report(result, groups, prefs)
        self.assertEqual([c.weightage for c in report.columns[:2]], ['12.5', '87.5'])
        self.assertEqual(report.header_groups[0].weightage, '100.0')

    def test_actual_cells(self):
        report = self._report(include_sum=True)
        rows = report.rows
        self.assertEqual(rows[0].cells, ('18.00', '60.00', '78.00', '78.00'))
        self.assertEqual(rows[1].cells, ('18.00', 'A', '18.00', '18.00'))
        self.assertEqual(rows[2].cells, ('10.00', '', '10.00', '10.00'))
        self.assertEqual(rows[0].roll_number, '1')
        self.assertEqual(rows[0].name, 'Ama Mensah')

    def test_weighted_cells(self):
        report = self._report(include_sum=True, display_mode='weighted', decimal_points=1)
        self.assertEqual(report.rows[0].cells, ('36.0', '45.0', '81.0', '81.0'))
        self.assertEqual(report.rows[1].cells[1], 'A')

    def test_both_mode_matches_single_modes(self):
        actual = self._report(include_sum=True, include_grades=True, display_mode='actual')
        weighted = self._report(include_sum=True, include_grades=True, display_mode='weighted')
        both = self._report(include_sum=True, include_grades=True, display_mode='both')
        for a_row, w_row, b_row in zip(actual.rows, weighted.rows, both.rows):
            for column, a, w, b in zip(both.columns, a_row.cells, w_row.cells, b_row.cells):
                if column.kind == 'subject_grade' or (column.kind == 'component' and a == w):
                    self.assertEqual(b, a)
                else:
                    self.assertEqual(b, f"{a} ({w})")

    def test_grades(self):
        report = self._report(include_grades=True)
        # Weighted: 81%, 90% (absent excluded), 20%
        self.assertEqual([row.cells[2] for row in report.rows], ['A', 'A', 'D'])
        self.assertEqual(report.rows[2].cells[-1], 'D')

    def test_summary_row_only_with_totals_or_grades(self):
        self.assertIsNone(self._report().summary_row)
        report = self._report(include_sum=True)
        self.assertEqual(report.summary_row.name, 'Subject Totals')
        self.assertEqual(report.summary_row.cells, ('', '', '106.00', '106.00'))

    def test_pagination_does_not_change_values(self):
        single = self._report(include_sum=True, students_per_page=1)
        many = self._report(include_sum=True, students_per_page=50)
        self.assertEqual(len(single.pages), 3)
        self.assertEqual(len(many.pages), 1)
        self.assertEqual(single.rows, many.rows)

    def test_multi_term_labels(self):
        components = (_component(1, '100', '100', term_id=1), _component(2, '100', '100', term_id=2))
        groups = [SubjectGroup(MATH, 'Mathematics', components, {1: 'T1', 2: 'T2'})]
        prefs = DisplayPreferences(include_sum=True, include_term_totals=True)
        result = aggregate(
            normalize([RawMarkEntry(1, 1, '50'), RawMarkEntry(1, 2, '70')], list(components)),
            list(components), prefs, term_shares={1: Decimal('40'), 2: Decimal('60')}
        )
        report = format_report(result, groups, prefs)
        self.assertEqual(
            [c.label for c in report.columns],
            ['T1 C1', 'T1 Total', 'T2 C2', 'T2 Total', 'Final', 'Marks']
        )
        self.assertEqual(
            format_report(result, groups, DisplayPreferences(include_sum=True, display_mode='weighted')).rows[0].cells[-2],
            '62.00'
        )


# ============ Database-backed tests ============

class ResultsFixtureMixin:
    """Basic 7 with Mathematics and English, two terms and a Half Yearly exam."""

    def _create_fixtures(self):
        self.admin = User.objects.create_school_admin(email='admin@school.test', password='pass')
        self.teacher = User.objects.create_teacher(email='teacher@school.test', password='pass')

        self.year = AcademicYear.objects.create(
            name='2024/2025', start_date=date(2024, 9, 1), end_date=date(2025, 7, 31), is_current=True
        )
        self.term1 = Term.objects.create(
            academic_year=self.year, name='Term 1', term_number=1,
            start_date=date(2024, 9, 1), end_date=date(2024, 12, 20)
        )
        self.term2 = Term.objects.create(
            academic_year=self.year, name='Term 2', term_number=2,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4)
        )

        self.class_obj = Class.objects.create(name='Basic 7', level_number=7)
        self.section = Section.objects.create(class_assigned=self.class_obj, name='A')
        self.math = Subject.objects.create(name='Mathematics', short_name='MATH')
        self.english = Subject.objects.create(name='English Language', short_name='ENG')
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.math, teacher=self.teacher)
        ClassSubject.objects.create(class_assigned=self.class_obj, subject=self.english)

        self.exam = Exam.objects.create(name='Half Yearly', term=self.term1)

        self.scheme = GradingScheme.objects.create(class_assigned=self.class_obj, subject=self.math, term=self.term1)
        self.unit1 = GradingComponent.objects.create(
            scheme=self.scheme, name='Unit 1', abbreviation='U1',
            max_marks=Decimal('20'), weightage_percent=Decimal('40')
        )
        self.unit2 = GradingComponent.objects.create(
            scheme=self.scheme, name='Unit 2', abbreviation='U2',
            max_marks=Decimal('80'), weightage_percent=Decimal('60')
        )

        self.ama = Student.objects.create(
            first_name='Ama', last_name='Mensah', admission_number='B7-001',
            roll_number=1, current_class=self.class_obj, section=self.section
        )
        self.kofi = Student.objects.create(
            first_name='Kofi', last_name='Boateng', admission_number='B7-002',
            roll_number=2, current_class=self.class_obj, section=self.section
        )
        MarkEntry.objects.create(student=self.ama, component=self.unit1, marks_obtained=Decimal('18'))
        MarkEntry.objects.create(student=self.ama, component=self.unit2, marks_obtained=Decimal('60'))
        MarkEntry.objects.create(student=self.kofi, component=self.unit1, marks_obtained=Decimal('18'))
        MarkEntry.objects.create(student=self.kofi, component=self.unit2, attendance='A')

    def _create_grading_system(self):
        system = GradingSystem.objects.create(name='Standard', is_default=True)
        for label, low, high in (('D', '0', '39.99'), ('C', '40', '59.99'), ('B', '60', '79.99'), ('A', '80', '100')):
            GradeBand.objects.create(
                grading_system=system, grade_label=label,
                min_percent=Decimal(low), max_percent=Decimal(high)
            )
        return system

    def _summary_payload(self, **extra):
        payload = {
            'class_id': self.class_obj.pk,
            'exam_id': self.exam.pk,
            'subject_components': [
                {'subject_id': self.math.pk, 'component_ids': [self.unit1.pk, self.unit2.pk]}
            ],
            'sum': True,
        }
        payload.update(extra)
        return payload


class SchemeResolverTests(ResultsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    def test_components_for_exam_in_order(self):
        components = resolve_components(self.class_obj.pk, self.math.pk, ExamSelector(self.exam.pk))
        self.assertEqual([c.component_id for c in components], [self.unit1.pk, self.unit2.pk])
        self.assertEqual(components[0].label, 'U1')

    def test_missing_scheme_is_not_found(self):
        with self.assertRaises(NotFoundError):
            resolve_components(self.class_obj.pk, self.math.pk, TermSelector((self.term1.pk, self.term2.pk)))

    def test_subject_not_taught_in_class(self):
        science = Subject.objects.create(name='Science', short_name='SCI')
        with self.assertRaises(NotFoundError):
            resolve_components(self.class_obj.pk, science.pk, ExamSelector(self.exam.pk))

    def test_unknown_exam(self):
        with self.assertRaises(NotFoundError):
            resolve_components(self.class_obj.pk, self.math.pk, ExamSelector(9999))

    def test_empty_scheme_gives_no_components(self):
        GradingScheme.objects.create(class_assigned=self.class_obj, subject=self.english, term=self.term1)
        self.assertEqual(resolve_components(self.class_obj.pk, self.english.pk, ExamSelector(self.exam.pk)), [])

    def test_weightage_above_hundred_is_configuration_error(self):
        GradingComponent.objects.create(
            scheme=self.scheme, name='Project', max_marks=Decimal('10'), weightage_percent=Decimal('10')
        )
        with self.assertRaises(ConfigurationError):
            resolve_components(self.class_obj.pk, self.math.pk, ExamSelector(self.exam.pk))

    def test_term_wise_components(self):
        scheme2 = GradingScheme.objects.create(class_assigned=self.class_obj, subject=self.math, term=self.term2)
        GradingComponent.objects.create(
            scheme=scheme2, name='Final', max_marks=Decimal('100'), weightage_percent=Decimal('100')
        )
        grouped = resolve_term_components(self.class_obj.pk, self.math.pk)
        self.assertEqual([term.pk for term, _ in grouped], [self.term1.pk, self.term2.pk])
        self.assertEqual(len(grouped[0][1]), 2)

    def test_class_exam_subjects(self):
        listing = class_exam_subjects()
        self.assertEqual(listing[0]['class_name'], 'Basic 7')
        self.assertEqual(listing[0]['exams'][0]['name'], 'Half Yearly')
        self.assertEqual({s['name'] for s in listing[0]['subjects']}, {'Mathematics', 'English Language'})

    def test_term_shares(self):
        self.assertEqual(resolve_term_shares([self.term1.pk]), {self.term1.pk: Decimal('100')})
        with self.assertRaises(ConfigurationError):
            resolve_term_shares([self.term1.pk, self.term2.pk])

        self.term1.final_weightage = Decimal('40')
        self.term1.save()
        self.term2.final_weightage = Decimal('60')
        self.term2.save()
        shares = resolve_term_shares([self.term1.pk, self.term2.pk])
        self.assertEqual(shares, {self.term1.pk: Decimal('40'), self.term2.pk: Decimal('60')})

        overridden = resolve_term_shares([self.term1.pk, self.term2.pk], {str(self.term1.pk): '50', self.term2.pk: 50})
        self.assertEqual(overridden[self.term1.pk], Decimal('50'))
        with self.assertRaises(ConfigurationError):
            resolve_term_shares([self.term1.pk, self.term2.pk], {self.term1.pk: 70})


class SummaryServiceTests(ResultsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    def test_classwise_summary(self):
        summary = build_summary(SummaryRequest.from_payload(self._summary_payload()))
        data = summary.to_dict()
        ama, kofi = data['students']
        self.assertEqual(ama['name'], 'Ama Mensah')
        self.assertEqual(Decimal(ama['total_raw']), Decimal('78'))
        self.assertEqual(Decimal(ama['total_weighted']), Decimal('81'))
        self.assertEqual(Decimal(kofi['subject_totals_weighted'][str(self.math.pk)]), Decimal('36'))
        self.assertEqual(Decimal(kofi['grand_percent_weighted']), Decimal('90'))
        self.assertEqual(kofi['components'][1]['attendance'], 'A')
        self.assertEqual(Decimal(data['summary']['grand_total']), Decimal('96'))
        self.assertEqual(data['subjectComponentGroups'][0]['subject_name'], 'Mathematics')
        self.assertEqual(data['report']['pages'][0][0]['cells'], ['18.00', '60.00', '78.00', '78.00'])
        self.assertEqual(summary.title, 'Basic 7 - Half Yearly (Term 1)')

    def test_grades_use_default_grading_system(self):
        self._create_grading_system()
        data = build_summary(SummaryRequest.from_payload(self._summary_payload(includeGrades=True))).to_dict()
        self.assertEqual(data['students'][0]['subject_grades'][str(self.math.pk)], 'A')
        self.assertEqual(data['summary']['grand_total_weighted_grade'], 'A')

    def test_grades_without_grading_system(self):
        with self.assertRaises(ConfigurationError):
            build_summary(SummaryRequest.from_payload(self._summary_payload(includeGrades=True)))

    def test_section_filter(self):
        section_b = Section.objects.create(class_assigned=self.class_obj, name='B')
        self.kofi.section = section_b
        self.kofi.save()
        data = build_summary(SummaryRequest.from_payload(self._summary_payload(section_id=section_b.pk))).to_dict()
        self.assertEqual([s['student_id'] for s in data['students']], [self.kofi.pk])

    def test_component_from_another_term_rejected(self):
        payload = self._summary_payload()
        payload['subject_components'] = [
            {'subject_id': self.math.pk, 'term_component_map': {str(self.term2.pk): [self.unit1.pk]}}
        ]
        with self.assertRaises(ValidationError):
            SummaryRequest.from_payload(payload)

    def test_final_summary_combines_terms(self):
        scheme2 = GradingScheme.objects.create(class_assigned=self.class_obj, subject=self.math, term=self.term2)
        final = GradingComponent.objects.create(
            scheme=scheme2, name='Final', max_marks=Decimal('100'), weightage_percent=Decimal('100')
        )
        MarkEntry.objects.create(student=self.ama, component=final, marks_obtained=Decimal('71'))
        payload = {
            'class_id': self.class_obj.pk,
            'subject_components': [{
                'subject_id': self.math.pk,
                'term_component_map': {
                    str(self.term1.pk): [self.unit1.pk, self.unit2.pk],
                    str(self.term2.pk): [final.pk],
                },
            }],
            'term_weights': {str(self.term1.pk): 40, str(self.term2.pk): 60},
            'sum': True,
        }
        data = build_summary(SummaryRequest.from_payload(payload, final=True)).to_dict()
        # 81 * 0.4 + 71 * 0.6
        self.assertEqual(Decimal(data['students'][0]['total_weighted']), Decimal('75'))
        self.assertEqual(data['term_shares'], {str(self.term1.pk): '40', str(self.term2.pk): '60'})


class ResultsViewTests(ResultsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()
        self.client.force_login(self.teacher)

    def _post(self, name, payload):
        return self.client.post(reverse(name), data=json.dumps(payload), content_type='application/json')

    def test_login_required(self):
        self.client.logout()
        response = self._post('results:report_summary', self._summary_payload())
        self.assertEqual(response.status_code, 401)

    def test_components_endpoint(self):
        response = self.client.get(reverse('results:components'), {
            'class_id': self.class_obj.pk, 'subject_id': self.math.pk, 'exam_id': self.exam.pk
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual([c['abbreviation'] for c in response.json()['components']], ['U1', 'U2'])

    def test_components_endpoint_requires_ids(self):
        response = self.client.get(reverse('results:components'), {'class_id': self.class_obj.pk})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['type'], 'validation_error')

    def test_term_wise_components_endpoint(self):
        response = self.client.get(reverse('results:term_wise_components'), {
            'class_id': self.class_obj.pk, 'subject_id': self.math.pk
        })
        self.assertEqual(response.json()['terms'][0]['term_name'], 'Term 1')

    def test_class_exam_subjects_endpoint(self):
        response = self.client.get(reverse('results:class_exam_subjects'))
        self.assertEqual(response.json()['classes'][0]['sections'][0]['name'], 'A')

    def test_report_summary(self):
        response = self._post('results:report_summary', self._summary_payload(displayMode='both'))
        self.assertEqual(response.status_code, 200)
        cells = response.json()['report']['pages'][0][0]['cells']
        self.assertEqual(cells[0], '18.00 (36.00)')

    def test_unknown_exam_is_404(self):
        response = self._post('results:report_summary', self._summary_payload(exam_id=9999))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['type'], 'not_found')
        self.assertEqual(response.json()['context'], {'exam_id': 9999})

    def test_configuration_error_is_422(self):
        response = self._post('results:report_summary', self._summary_payload(includeGrades=True))
        self.assertEqual(response.status_code, 422)

    def test_invalid_json(self):
        response = self.client.post(reverse('results:report_summary'), data='{', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_final_summary_needs_term_shares(self):
        scheme2 = GradingScheme.objects.create(class_assigned=self.class_obj, subject=self.math, term=self.term2)
        final = GradingComponent.objects.create(
            scheme=scheme2, name='Final', max_marks=Decimal('100'), weightage_percent=Decimal('100')
        )
        response = self._post('results:final_summary', {
            'class_id': self.class_obj.pk,
            'subject_components': [{
                'subject_id': self.math.pk,
                'term_component_map': {str(self.term1.pk): [self.unit1.pk], str(self.term2.pk): [final.pk]},
            }],
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()['type'], 'configuration_error')

    def test_xlsx_export(self):
        response = self._post('results:report_summary_xlsx', self._summary_payload(fileName='basic 7/results'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response['Content-Type'],
            'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )
        self.assertIn('filename="basic_7_results.xlsx"', response['Content-Disposition'])
        self.assertTrue(response.content.startswith(b'PK'))

    @patch('results.views.summary_pdf', return_value=b'%PDF-1.7 test')
    def test_pdf_export(self, mock_pdf):
        response = self._post('results:report_summary_pdf', self._summary_payload(orientation='landscape'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertEqual(response.content, b'%PDF-1.7 test')
        self.assertEqual(mock_pdf.call_args[0][1], 'landscape')

    def test_export_pdf_requires_html(self):
        response = self._post('results:export_pdf', {'html': '', 'fileName': 'x'})
        self.assertEqual(response.status_code, 400)

    def test_email_summary_queues_task(self):
        with patch('results.views.email_result_summary') as mock_task:
            mock_task.delay.return_value.id = 'task-1'
            response = self._post('results:email_summary', self._summary_payload(recipient='head@school.test'))
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()['task_id'], 'task-1')
        self.assertEqual(mock_task.delay.call_args[0][1], 'head@school.test')


class EmailSummaryTaskTests(ResultsFixtureMixin, TestCase):

    def setUp(self):
        self._create_fixtures()

    @patch('results.tasks.summary_pdf', return_value=b'%PDF-1.7 test')
    def test_sends_pdf_attachment(self, mock_pdf):
        result = email_result_summary.apply(
            args=(self._summary_payload(fileName='half_yearly'), 'head@school.test')
        ).get()
        self.assertTrue(result['success'])
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['head@school.test'])
        self.assertEqual(mail.outbox[0].attachments[0][0], 'half_yearly.pdf')
