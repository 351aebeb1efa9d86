from django.urls import path

from . import views

app_name = 'results'

urlpatterns = [
    # Component pickers
    path('components/', views.components, name='components'),
    path('components/term-wise/', views.term_wise_components, name='term_wise_components'),
    path('class-exam-subjects/', views.class_exam_subject_list, name='class_exam_subjects'),

    # Classwise (single exam)
    path('report-summary/', views.report_summary, name='report_summary'),
    path('report-summary/pdf/', views.report_summary_pdf, name='report_summary_pdf'),
    path('report-summary/xlsx/', views.report_summary_xlsx, name='report_summary_xlsx'),

    # Final (multi-term)
    path('final-summary/', views.final_summary, name='final_summary'),
    path('final-summary/pdf/', views.final_summary_pdf, name='final_summary_pdf'),
    path('final-summary/xlsx/', views.final_summary_xlsx, name='final_summary_xlsx'),

    # Delivery
    path('summary/email/', views.email_summary, name='email_summary'),
    path('export-pdf/', views.export_pdf, name='export_pdf'),
]
