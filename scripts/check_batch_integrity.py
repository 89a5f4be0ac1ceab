"""Check batch counters and result uniqueness in the database.

Usage: python scripts/check_batch_integrity.py
Exits with status 1 when any issue is found.
"""
import sys

from sqlalchemy import func, select

from outcome_tracker.core.database import SessionLocal
from outcome_tracker.models import BatchFileStatus, BatchJob, Course, Exam, StudentExamResult


def find_issues(db) -> list[str]:
    issues = []

    for job in db.execute(select(BatchJob)).scalars():
        tag = f"Batch {job.batch_id}"
        if job.processed_count != job.success_count + job.failed_count:
            issues.append(
                f"{tag}: processed {job.processed_count} != "
                f"success {job.success_count} + failed {job.failed_count}"
            )
        if job.processed_count > job.total_files:
            issues.append(f"{tag}: processed {job.processed_count} > total {job.total_files}")
        if job.is_complete != (job.processed_count == job.total_files):
            issues.append(
                f"{tag}: is_complete={job.is_complete} with {job.processed_count}/{job.total_files} processed"
            )
        status_count = db.execute(
            select(func.count()).select_from(BatchFileStatus).where(BatchFileStatus.batch_job_id == job.id)
        ).scalar()
        if status_count != job.processed_count:
            issues.append(f"{tag}: {status_count} status entries for {job.processed_count} processed files")

    duplicates = db.execute(
        select(StudentExamResult.student_number, StudentExamResult.exam_id, func.count())
        .group_by(StudentExamResult.student_number, StudentExamResult.exam_id)
        .having(func.count() > 1)
    ).all()
    for student_number, exam_id, count in duplicates:
        issues.append(f"Student {student_number} has {count} results for exam {exam_id}")

    out_of_range = db.execute(
        select(func.count()).select_from(StudentExamResult).where(
            (StudentExamResult.percentage < 0) | (StudentExamResult.percentage > 100)
        )
    ).scalar()
    if out_of_range:
        issues.append(f"{out_of_range} results with percentage outside 0-100")

    return issues


def main() -> int:
    db = SessionLocal()
    try:
        print("Database status:")
        print(f"   Courses: {db.execute(select(func.count()).select_from(Course)).scalar()}")
        print(f"   Exams: {db.execute(select(func.count()).select_from(Exam)).scalar()}")
        print(f"   Results: {db.execute(select(func.count()).select_from(StudentExamResult)).scalar()}")
        print(f"   Batches: {db.execute(select(func.count()).select_from(BatchJob)).scalar()}\n")

        issues = find_issues(db)
    finally:
        db.close()

    if not issues:
        print("Integrity check: no issues found")
        return 0

    print("Integrity issues:")
    for issue in issues:
        print(f"   {issue}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
