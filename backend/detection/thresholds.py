"""Threshold configuration for underpayment detection."""

from __future__ import annotations

from dataclasses import dataclass

import config


@dataclass(frozen=True)
class UnderpaymentThresholds:
    min_percent: float = 5.0
    min_amount: float = 5.0
    high_recovery_likelihood: float = 0.7
    medium_recovery_likelihood: float = 0.4
    default_expected_ratio: float = 0.8
    history_min_points: int = 5
    history_lookback_days: int = 180

    @classmethod
    def from_config(cls) -> "UnderpaymentThresholds":
        return cls(
            min_percent=config.UNDERPAYMENT_MIN_PERCENT,
            min_amount=config.UNDERPAYMENT_MIN_AMOUNT,
        )

    def is_underpaid(self, underpaid_amount: float, underpaid_percent: float) -> bool:
        return underpaid_amount >= self.min_amount and underpaid_percent >= self.min_percent

    def recovery_tier(self, likelihood: float) -> str:
        if likelihood >= self.high_recovery_likelihood:
            return "high"
        if likelihood >= self.medium_recovery_likelihood:
            return "medium"
        return "low"

    @staticmethod
    def clamp_likelihood(likelihood: float) -> float:
        if likelihood < 0.1:
            return 0.1
        if likelihood > 0.9:
            return 0.9
        return likelihood
