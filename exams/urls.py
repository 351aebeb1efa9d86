from django.urls import path

from . import views

app_name = 'exams'

urlpatterns = [
    # Marks entry
    path('marks/', views.marks, name='marks'),
    path('marks/save/', views.marks_save, name='marks_save'),
    path('marks/export/', views.marks_export, name='marks_export'),
    path('marks/export-pdf/', views.marks_export_pdf, name='marks_export_pdf'),
    path('marks/import/', views.marks_import, name='marks_import'),

    # Locking
    path('components/<int:component_id>/lock/', views.component_lock, name='component_lock'),
    path('components/<int:component_id>/unlock/', views.component_unlock, name='component_unlock'),
    path('<int:exam_id>/lock/toggle/', views.exam_lock_toggle, name='exam_lock_toggle'),
]
