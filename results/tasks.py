"""
Celery tasks for the results app.
Emails result summaries as PDF attachments.
"""
import logging
import ssl
from smtplib import SMTPException

from celery import shared_task
from django.conf import settings
from django.core.mail import EmailMessage

from core.models import SchoolSettings

from . import config
from .export import safe_filename, summary_pdf
from .services import SummaryRequest, build_summary

logger = logging.getLogger(__name__)

# Transient errors that should trigger retry
RETRYABLE_EXCEPTIONS = (SMTPException, ssl.SSLError, ConnectionError, TimeoutError)


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
)
def email_result_summary(self, payload, recipient, final=False):
    """
    Build a result summary from a report request body and email it as a PDF.

    Args:
        payload: the report-summary or final-summary request body
        recipient: email address to send to
        final: True for a multi-term final result

    A ResultsError (bad request or configuration) is not retried.
    """
    summary = build_summary(SummaryRequest.from_payload(payload, final=final))
    pdf = summary_pdf(summary, payload.get('orientation'))

    school = SchoolSettings.load()
    from_email = school.results_email_from or settings.DEFAULT_FROM_EMAIL
    email = EmailMessage(
        subject=summary.title,
        body=f"Please find attached the result summary for {summary.title}.",
        from_email=from_email,
        to=[recipient],
    )
    email.attach(safe_filename(payload.get('fileName'), 'pdf'), pdf, 'application/pdf')

    try:
        email.send(fail_silently=False)
    except RETRYABLE_EXCEPTIONS as e:
        logger.warning(f"Sending {summary.title} to {recipient} failed, retrying: {e}")
        raise self.retry(exc=e)

    logger.info(f"Emailed {summary.title} to {recipient}")
    return {'success': True, 'recipient': recipient, 'title': summary.title}
