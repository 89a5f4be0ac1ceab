"""initial_outcome_schema

Revision ID: 0001_initial_outcome_schema
Revises:
Create Date: 2026-10-19 10:12:41.000000

Creates the outcome tracking schema:
- courses with learning outcomes (ÖÇ -> PÇ mapping) and enrolled students
- exams, questions, per-question scores and student results
- batch scoring jobs with per-file statuses
- in-app notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_outcome_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'courses',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('semester', sa.String(50), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_courses_code', 'courses', ['code'], unique=True)

    op.create_table(
        'course_learning_outcomes',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('course_id', sa.BigInteger(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('program_outcomes', JSON, nullable=False),
        sa.UniqueConstraint('course_id', 'code', name='uq_course_learning_outcome_code'),
    )
    op.create_index('ix_course_learning_outcomes_course_id', 'course_learning_outcomes', ['course_id'])

    op.create_table(
        'course_students',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('course_id', sa.BigInteger(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_number', sa.String(20), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.UniqueConstraint('course_id', 'student_number', name='uq_course_student_number'),
    )
    op.create_index('ix_course_students_course_id', 'course_students', ['course_id'])

    op.create_table(
        'exams',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('course_id', sa.BigInteger(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('exam_type', sa.Enum('MIDTERM', 'FINAL', name='examtype'), nullable=False),
        sa.Column('exam_code', sa.String(50), nullable=False),
        sa.Column('max_score', sa.Integer(), nullable=False),
        sa.Column('learning_outcomes', JSON, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('course_id', 'exam_code', name='uq_exam_course_code'),
    )
    op.create_index('ix_exams_course_id', 'exams', ['course_id'])
    op.create_index('ix_exams_exam_type', 'exams', ['exam_type'])

    op.create_table(
        'exam_questions',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('exam_id', sa.BigInteger(), sa.ForeignKey('exams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.Column('max_score', sa.Numeric(10, 2), nullable=False),
        sa.Column('learning_outcome_codes', JSON, nullable=False),
        sa.UniqueConstraint('exam_id', 'number', name='uq_exam_question_number'),
    )
    op.create_index('ix_exam_questions_exam_id', 'exam_questions', ['exam_id'])

    op.create_table(
        'question_scores',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('question_id', sa.BigInteger(), sa.ForeignKey('exam_questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_number', sa.String(20), nullable=False),
        sa.Column('score_value', sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('question_id', 'student_number', name='uq_question_score_student'),
    )
    op.create_index('ix_question_scores_question_id', 'question_scores', ['question_id'])
    op.create_index('ix_question_scores_student_number', 'question_scores', ['student_number'])

    op.create_table(
        'student_exam_results',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('student_number', sa.String(20), nullable=False),
        sa.Column('exam_id', sa.BigInteger(), sa.ForeignKey('exams.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('course_id', sa.BigInteger(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('total_score', sa.Numeric(10, 2), nullable=False),
        sa.Column('max_score', sa.Numeric(10, 2), nullable=False),
        sa.Column('percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('outcome_performance', JSON, nullable=False),
        sa.Column('program_outcome_performance', JSON, nullable=False),
        sa.Column('source', sa.Enum('BATCH', 'SINGLE', 'MANUAL', name='resultsource'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('student_number', 'exam_id', name='uq_result_student_exam'),
        sa.CheckConstraint('percentage >= 0 AND percentage <= 100', name='ck_result_percentage_range'),
    )
    op.create_index('ix_student_exam_results_student_number', 'student_exam_results', ['student_number'])
    op.create_index('ix_student_exam_results_exam_id', 'student_exam_results', ['exam_id'])
    op.create_index('ix_student_exam_results_course_id', 'student_exam_results', ['course_id'])
    op.create_index('ix_student_exam_results_percentage', 'student_exam_results', ['percentage'])

    op.create_table(
        'batch_jobs',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('batch_id', sa.String(64), nullable=False),
        sa.Column('exam_id', sa.BigInteger(), sa.ForeignKey('exams.id', ondelete='CASCADE'), nullable=False),
        sa.Column('course_id', sa.BigInteger(), sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('total_files', sa.Integer(), nullable=False),
        sa.Column('processed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_batch_jobs_batch_id', 'batch_jobs', ['batch_id'], unique=True)
    op.create_index('ix_batch_jobs_exam_id', 'batch_jobs', ['exam_id'])

    op.create_table(
        'batch_file_statuses',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('batch_job_id', sa.BigInteger(), sa.ForeignKey('batch_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('student_number', sa.String(20), nullable=True),
        sa.Column('status', sa.Enum('SUCCESS', 'FAILED', name='filestatus'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('error_code', sa.String(50), nullable=True),
    )
    op.create_index('ix_batch_file_statuses_batch_job_id', 'batch_file_statuses', ['batch_job_id'])

    op.create_table(
        'notifications',
        sa.Column('id', ID, primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('link', sa.Text(), nullable=True),
        sa.Column('action_data', JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notifications_notification_type', 'notifications', ['notification_type'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('batch_file_statuses')
    op.drop_table('batch_jobs')
    op.drop_table('student_exam_results')
    op.drop_table('question_scores')
    op.drop_table('exam_questions')
    op.drop_table('exams')
    op.drop_table('course_students')
    op.drop_table('course_learning_outcomes')
    op.drop_table('courses')

    # PostgreSQL keeps enum types after the tables are gone
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in ('filestatus', 'resultsource', 'examtype'):
            op.execute(f'DROP TYPE IF EXISTS {enum_name}')
