"""Wallet profiling layer - Performance evaluation and smart-money classification."""

from smart_money_tracker.profiler.classifier import (
    DeactivationConfig,
    QualificationConfig,
    SmartMoneyClassifier,
)
from smart_money_tracker.profiler.evaluator import EvaluationConfig, WalletPerformanceEvaluator
from smart_money_tracker.profiler.models import (
    ClassificationResult,
    PerformanceMetrics,
    WalletCategory,
    WalletRecord,
    WalletStatus,
)

__all__ = [
    "ClassificationResult",
    "DeactivationConfig",
    "EvaluationConfig",
    "PerformanceMetrics",
    "QualificationConfig",
    "SmartMoneyClassifier",
    "WalletCategory",
    "WalletPerformanceEvaluator",
    "WalletRecord",
    "WalletStatus",
]
