import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


ATTENDANCE = [
    ('P', 'Present'), ('A', 'Absent'), ('L', 'Leave'), ('ACT', 'School Activity'),
    ('LA', 'Long Absence'), ('ML', 'Medical Leave'), ('X', 'Exempted'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('academics', '0001_initial'),
        ('core', '0001_initial'),
        ('students', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='AssessmentComponent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='e.g., Unit Test 1, Half Yearly Theory', max_length=100)),
                ('abbreviation', models.CharField(blank=True, help_text='Column heading on result sheets (e.g., UT1)', max_length=20)),
                ('default_max_marks', models.DecimalField(decimal_places=2, default=Decimal('100.00'), help_text='Suggested maximum marks when added to a scheme', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('is_internal', models.BooleanField(default=False, help_text='Internal (continuous) assessment rather than a written exam')),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Assessment Component',
                'verbose_name_plural': 'Assessment Components',
                'db_table': 'assessment_component',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='GradingSystem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Name of the grading system (e.g., CBSE Scholastic)', max_length=100, unique=True)),
                ('description', models.TextField(blank=True)),
                ('is_default', models.BooleanField(default=False, help_text='Used for result sheets that do not name a grading system')),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'grading_system',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Exam',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('exam_type', models.CharField(choices=[('unit_test', 'Unit Test'), ('mid_term', 'Mid Term'), ('term_end', 'End of Term'), ('annual', 'Annual')], default='term_end', max_length=20)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('end_date', models.DateField(blank=True, null=True)),
                ('is_locked', models.BooleanField(default=False, help_text='When locked, marks for this term cannot be modified')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('classes', models.ManyToManyField(blank=True, help_text='Leave empty if the exam is written by every class', related_name='exams', to='academics.class')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='exams', to='core.term')),
            ],
            options={
                'db_table': 'exam',
                'ordering': ['term', 'start_date', 'name'],
            },
        ),
        migrations.CreateModel(
            name='GradingScheme',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('version', models.PositiveSmallIntegerField(default=1)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grading_schemes', to='academics.class')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='grading_schemes', to=settings.AUTH_USER_MODEL)),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grading_schemes', to='academics.subject')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grading_schemes', to='core.term')),
            ],
            options={
                'db_table': 'grading_scheme',
                'ordering': ['class_assigned', 'subject', 'term', '-version'],
                'unique_together': {('class_assigned', 'subject', 'term', 'version')},
            },
        ),
        migrations.AddConstraint(
            model_name='gradingscheme',
            constraint=models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('class_assigned', 'subject', 'term'), name='one_active_scheme_per_subject_term'),
        ),
        migrations.CreateModel(
            name='GradingComponent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100)),
                ('abbreviation', models.CharField(blank=True, max_length=20)),
                ('max_marks', models.DecimalField(decimal_places=2, max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('weightage_percent', models.DecimalField(decimal_places=2, help_text="Share of the subject's weighted score, in percent", max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('is_locked', models.BooleanField(default=False, help_text='When locked, marks for this component cannot be modified')),
                ('locked_at', models.DateTimeField(blank=True, null=True)),
                ('assessment', models.ForeignKey(blank=True, help_text='Library entry this part was created from', null=True, on_delete=django.db.models.deletion.PROTECT, related_name='scheme_entries', to='exams.assessmentcomponent')),
                ('locked_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='locked_components', to=settings.AUTH_USER_MODEL)),
                ('scheme', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='components', to='exams.gradingscheme')),
            ],
            options={
                'db_table': 'grading_component',
                'ordering': ['scheme', 'id'],
            },
        ),
        migrations.CreateModel(
            name='MarkEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('marks_obtained', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True, validators=[django.core.validators.MinValueValidator(0)])),
                ('attendance', models.CharField(choices=ATTENDANCE, default='P', help_text='Any code other than P means the marks are ignored', max_length=3)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('component', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='mark_entries', to='exams.gradingcomponent')),
                ('entered_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='mark_entries', to=settings.AUTH_USER_MODEL)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='mark_entries', to='students.student')),
            ],
            options={
                'db_table': 'mark_entry',
                'unique_together': {('student', 'component')},
                'indexes': [models.Index(fields=['component', 'student'], name='mark_entry_component_idx')],
            },
        ),
        migrations.CreateModel(
            name='MarkAuditLog',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('action', models.CharField(choices=[('CREATE', 'Created'), ('UPDATE', 'Updated'), ('DELETE', 'Deleted')], max_length=10)),
                ('old_marks', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('new_marks', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('old_attendance', models.CharField(blank=True, max_length=3)),
                ('new_attendance', models.CharField(blank=True, max_length=3)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.CharField(blank=True, max_length=255)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('component', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='mark_audit_logs', to='exams.gradingcomponent')),
                ('mark_entry', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to='exams.markentry')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='mark_audit_logs', to='students.student')),
                ('user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='mark_audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'mark_audit_log',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='GradeBand',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('grade_label', models.CharField(max_length=10)),
                ('min_percent', models.DecimalField(decimal_places=2, max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('max_percent', models.DecimalField(decimal_places=2, max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('remark', models.CharField(blank=True, max_length=100)),
                ('grading_system', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bands', to='exams.gradingsystem')),
            ],
            options={
                'db_table': 'grade_band',
                'ordering': ['grading_system', '-min_percent'],
                'unique_together': {('grading_system', 'grade_label')},
            },
        ),
    ]
