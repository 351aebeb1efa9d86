"""
Configuration settings for the results app.

These values can be overridden in Django settings by prefixing with RESULTS_.
For example, to print more rows per page:
    RESULTS_DEFAULT_STUDENTS_PER_PAGE = 30

All configuration values are lazily loaded to avoid Django setup issues.
"""


def _get_setting(name, default):
    from django.conf import settings
    return getattr(settings, f'RESULTS_{name}', default)


_DEFAULTS = {
    # Display preference defaults for report requests
    'DEFAULT_DISPLAY_MODE': 'actual',
    'DEFAULT_DECIMAL_POINTS': 2,
    'DEFAULT_ROUNDING': 'none',
    'DEFAULT_STUDENTS_PER_PAGE': 20,
    'MAX_STUDENTS_PER_PAGE': 100,

    # Export settings
    'PDF_DEFAULT_ORIENTATION': 'portrait',
    'PDF_TEMPLATE': 'results/summary_pdf.html',
    'MARKS_SHEET_PDF_TEMPLATE': 'exams/marks_sheet_pdf.html',
    'EXCEL_HEADER_COLOR': '4F46E5',

    # Marks sheet import
    'MAX_IMPORT_FILE_SIZE': 5 * 1024 * 1024,  # 5 MB

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


_config = _ConfigProxy()


def __getattr__(name):
    return getattr(_config, name)
