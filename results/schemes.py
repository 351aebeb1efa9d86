"""
Scheme resolver: which grading components apply to a class, subject and exam/terms.

Every call reads the database; nothing is cached between requests.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Tuple

from academics.models import Class, ClassSubject, Section, Subject
from core.models import Term
from exams.models import Exam, GradingScheme

from .exceptions import NotFoundError, ConfigurationError, ValidationError
from .selection import as_id
from .types import Component, ZERO, HUNDRED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExamSelector:
    """Components of the term a single exam belongs to."""
    exam_id: int


@dataclass(frozen=True)
class TermSelector:
    """Components of one or more terms (final result)."""
    term_ids: Tuple[int, ...]


def _get_or_not_found(model, pk, label, **context):
    try:
        return model.objects.get(pk=pk)
    except model.DoesNotExist:
        raise NotFoundError(f"{label} {pk} not found.", **context)


def to_component(grading_component, scheme):
    return Component(
        component_id=grading_component.pk,
        subject_id=scheme.subject_id,
        term_id=scheme.term_id,
        name=grading_component.name,
        abbreviation=grading_component.abbreviation,
        max_marks=grading_component.max_marks,
        weightage_percent=grading_component.weightage_percent,
        is_locked=grading_component.is_locked,
    )


def get_exam(exam_id):
    try:
        return Exam.objects.select_related('term').get(pk=exam_id)
    except Exam.DoesNotExist:
        raise NotFoundError(f"Exam {exam_id} not found.", exam_id=exam_id)


def get_class_and_section(class_id, section_id=None):
    class_obj = _get_or_not_found(Class, class_id, 'Class', class_id=class_id)
    section = None
    if section_id is not None:
        try:
            section = Section.objects.get(pk=section_id, class_assigned=class_obj)
        except Section.DoesNotExist:
            raise NotFoundError(
                f"Section {section_id} not found in {class_obj.name}.",
                class_id=class_id, section_id=section_id
            )
    return class_obj, section


def check_class_subject(class_id, subject_id):
    """Raise NotFoundError unless the class and subject exist and the subject is taught in the class."""
    _get_or_not_found(Class, class_id, 'Class', class_id=class_id)
    _get_or_not_found(Subject, subject_id, 'Subject', subject_id=subject_id)
    if not ClassSubject.objects.filter(class_assigned_id=class_id, subject_id=subject_id).exists():
        raise NotFoundError(
            'Subject is not assigned to this class.',
            class_id=class_id, subject_id=subject_id
        )


def _selector_term_ids(selector):
    if isinstance(selector, ExamSelector):
        return [get_exam(selector.exam_id).term_id]

    if isinstance(selector, TermSelector):
        term_ids = sorted(set(selector.term_ids))
        if not term_ids:
            raise ValidationError('Select at least one term.')
        found = set(Term.objects.filter(pk__in=term_ids).values_list('pk', flat=True))
        for term_id in term_ids:
            if term_id not in found:
                raise NotFoundError(f"Term {term_id} not found.", term_id=term_id)
        return term_ids

    raise TypeError(f"Unsupported selector: {selector!r}")


def _check_weightage(components, class_id, subject_id, term_id):
    total = sum((c.weightage_percent for c in components), ZERO)
    if total > HUNDRED:
        raise ConfigurationError(
            f"Component weightages add up to {total}%, above 100%.",
            class_id=class_id, subject_id=subject_id, term_id=term_id
        )


def resolve_components(class_id, subject_id, selector):
    """
    Ordered components (term id, then component id) of the active schemes for
    the selected term(s). A scheme without components gives an empty list;
    a missing scheme is a NotFoundError.
    """
    check_class_subject(class_id, subject_id)
    term_ids = _selector_term_ids(selector)

    schemes = {
        scheme.term_id: scheme
        for scheme in GradingScheme.objects.filter(
            class_assigned_id=class_id,
            subject_id=subject_id,
            term_id__in=term_ids,
            is_active=True,
        ).prefetch_related('components')
    }

    components = []
    for term_id in term_ids:
        scheme = schemes.get(term_id)
        if scheme is None:
            raise NotFoundError(
                'No grading scheme is defined for this class, subject and term.',
                class_id=class_id, subject_id=subject_id, term_id=term_id
            )
        term_components = sorted(
            (to_component(gc, scheme) for gc in scheme.components.all()),
            key=lambda c: c.component_id
        )
        _check_weightage(term_components, class_id, subject_id, term_id)
        components.extend(term_components)

    logger.debug(f"Resolved {len(components)} components for class {class_id}, subject {subject_id}")
    return components


def resolve_selection(class_id, selection):
    """Components of a SubjectSelection, in resolver order."""
    components = resolve_components(
        class_id, selection.subject_id, TermSelector(tuple(selection.term_ids))
    )
    by_id = {c.component_id: c for c in components}
    for term_id, component_ids in selection.term_component_map.items():
        for component_id in sorted(component_ids):
            component = by_id.get(component_id)
            if component is None or component.term_id != term_id:
                raise NotFoundError(
                    f"Component {component_id} is not part of the subject's scheme for this term.",
                    subject_id=selection.subject_id, term_id=term_id, component_id=component_id
                )
    wanted = selection.component_ids
    return [c for c in components if c.component_id in wanted]


def resolve_term_components(class_id, subject_id):
    """
    Every active component of a class-subject grouped by term, for the
    term-wise component picker of the final result page.

    Returns a list of (term, [Component, ...]) in term order.
    """
    check_class_subject(class_id, subject_id)
    schemes = GradingScheme.objects.filter(
        class_assigned_id=class_id,
        subject_id=subject_id,
        is_active=True,
    ).select_related('term__academic_year').prefetch_related('components')

    grouped = []
    for scheme in sorted(schemes, key=lambda s: s.term_id):
        components = sorted(
            (to_component(gc, scheme) for gc in scheme.components.all()),
            key=lambda c: c.component_id
        )
        grouped.append((scheme.term, components))
    return grouped


def class_exam_subjects():
    """Active classes with their sections, exams and assigned subjects."""
    classes = Class.objects.filter(is_active=True).prefetch_related(
        'sections', 'subjects__subject'
    )
    exams = list(Exam.objects.select_related('term').prefetch_related('classes'))

    listing = []
    for class_obj in classes:
        class_exams = [
            exam for exam in exams
            if not exam.classes.all() or class_obj in exam.classes.all()
        ]
        listing.append({
            'class_id': class_obj.pk,
            'class_name': class_obj.name,
            'sections': [{'section_id': s.pk, 'name': s.name} for s in class_obj.sections.all()],
            'exams': [
                {
                    'exam_id': exam.pk,
                    'name': exam.name,
                    'term_id': exam.term_id,
                    'term_name': exam.term.name,
                    'is_locked': exam.is_locked,
                }
                for exam in class_exams
            ],
            'subjects': [
                {'subject_id': cs.subject_id, 'name': cs.subject.name}
                for cs in class_obj.subjects.all()
            ],
        })
    return listing


def _parse_share(value, term_id):
    try:
        share = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError('Term share must be a number.', term_id=term_id)
    if not share.is_finite() or share < ZERO or share > HUNDRED:
        raise ValidationError('Term share must be between 0 and 100.', term_id=term_id)
    return share


def resolve_term_shares(term_ids, overrides=None):
    """
    Each term's share (percent) of a final result.

    A share given with the request wins over the term's configured
    `final_weightage`. A lone term counts in full unless a share is given.
    Shares are never assumed equal: a term without one is a ConfigurationError.
    """
    overrides = {as_id(k, 'term_id'): _parse_share(v, k) for k, v in (overrides or {}).items()}
    term_ids = sorted(set(term_ids))

    terms = {t.pk: t for t in Term.objects.filter(pk__in=term_ids)}
    for term_id in term_ids:
        if term_id not in terms:
            raise NotFoundError(f"Term {term_id} not found.", term_id=term_id)

    if len(term_ids) == 1 and term_ids[0] not in overrides:
        return {term_ids[0]: HUNDRED}

    shares = {}
    for term_id in term_ids:
        share = overrides.get(term_id, terms[term_id].final_weightage)
        if share is None:
            raise ConfigurationError(
                f"Term '{terms[term_id].name}' has no share in the final result.",
                term_id=term_id
            )
        shares[term_id] = Decimal(share)

    total = sum(shares.values(), ZERO)
    if total > HUNDRED:
        raise ConfigurationError(
            f"Term shares add up to {total}%, above 100%.",
            term_ids=term_ids
        )
    return shares
