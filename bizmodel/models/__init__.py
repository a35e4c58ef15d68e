"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order follows FK dependencies: users → quiz_attempts → payments/ai_contents → refunds.
"""
from bizmodel.models.user import UserORM
from bizmodel.models.quiz_attempt import QuizAttemptORM
from bizmodel.models.payment import PaymentORM
from bizmodel.models.ai_content import AIContentORM
from bizmodel.models.refund import RefundORM

__all__ = ["UserORM", "QuizAttemptORM", "PaymentORM", "AIContentORM", "RefundORM"]
