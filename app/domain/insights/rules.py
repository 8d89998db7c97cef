"""Insight rules.

Each rule maps one category's recent expense history to at most one insight
candidate. Rules are pure: no I/O, no exceptions, and safe for categories
with a single transaction. Priorities only order the display; every
applicable rule fires independently.

======================  ========  ==============================================
Rule                    Priority  Fires when
======================  ========  ==============================================
unusual_expense         5         a transaction is > 2 std-devs from the mean
spending_increase       4         month-over-month growth is above 20%
budget_recommendation   3         no budget yet, or the budget is being exceeded
positive_reinforcement  2         under 90% of budget, or spending fell >= 10%
======================  ========  ==============================================
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Protocol, Sequence

from app.services.statistics import analyze_spending, compare_monthly_spending, is_outlier, mean

SPENDING_INCREASE_THRESHOLD = 20.0
OUTLIER_THRESHOLD = 2.0
OUTLIER_MIN_TRANSACTIONS = 10
BUDGET_WINDOW_MONTHS = 3
BUDGET_MIN_TRANSACTIONS = 5
BUDGET_MIN_MONTHS = 2
BUDGET_BUFFER = 1.1
BUDGET_MIN_RECOMMENDATION = 20
BUDGET_SIMILARITY_TOLERANCE = 0.15
REINFORCEMENT_BUDGET_USAGE_CEILING = 90.0
REINFORCEMENT_DECREASE_THRESHOLD = -10.0

PRIORITY_UNUSUAL_EXPENSE = 5
PRIORITY_SPENDING_INCREASE = 4
PRIORITY_BUDGET_RECOMMENDATION = 3
PRIORITY_POSITIVE_REINFORCEMENT = 2


class TransactionLike(Protocol):
    id: Any
    amount: Any
    date: date


@dataclass(slots=True)
class InsightCandidate:
    """An insight produced by a rule, not yet persisted."""

    user_id: int
    type: str
    priority: int
    title: str
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RuleInput:
    user_id: int
    category_id: int
    category_name: str
    transactions: Sequence[TransactionLike]
    current_month: date
    current_budget: Optional[float] = None


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def shift_month(value: date, months: int) -> date:
    """Return the first day of the month ``months`` away from ``value``."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _amount(transaction: TransactionLike) -> float:
    try:
        return float(transaction.amount)
    except (TypeError, ValueError):
        return 0.0


def _in_month(transactions: Sequence[TransactionLike], month: date) -> list[TransactionLike]:
    start = month_start(month)
    end = shift_month(month, 1)
    return [t for t in transactions if start <= t.date < end]


def _total(transactions: Sequence[TransactionLike]) -> float:
    return sum((_amount(t) for t in transactions), 0.0)


def _usable_budget(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    budget = float(value)
    return budget if budget > 0 else None


def detect_spending_increase(data: RuleInput) -> Optional[InsightCandidate]:
    """Flag a category whose spend grew more than 20% over last month.

    Dining at $340 last month and $480 this month is a 41.2% increase.
    """
    previous_month = shift_month(data.current_month, -1)
    current = _in_month(data.transactions, data.current_month)
    previous = _in_month(data.transactions, previous_month)
    if not current or not previous:
        return None

    comparison = compare_monthly_spending(_total(current), _total(previous))
    current_amount = comparison.current
    previous_amount = comparison.previous
    percent_change = comparison.percent_change
    if percent_change <= SPENDING_INCREASE_THRESHOLD:
        return None

    rounded = round(percent_change)
    name = data.category_name
    return InsightCandidate(
        user_id=data.user_id,
        type="spending_increase",
        priority=PRIORITY_SPENDING_INCREASE,
        title=f"{name} spending increased {rounded}%",
        description=(
            f"Your {name} spending increased by {rounded}% this month "
            f"(${current_amount:.0f} vs ${previous_amount:.0f} last month). "
            "Consider reviewing recent expenses to see if this aligns with your goals."
        ),
        metadata={
            "category_id": data.category_id,
            "category_name": name,
            "current_amount": round(current_amount, 2),
            "previous_amount": round(previous_amount, 2),
            "percent_change": round(percent_change, 1),
            "transaction_count_current": len(current),
            "transaction_count_previous": len(previous),
            "current_month": data.current_month.strftime("%Y-%m"),
            "previous_month": previous_month.strftime("%Y-%m"),
        },
    )


def recommend_budget_limit(data: RuleInput) -> Optional[InsightCandidate]:
    """Suggest a monthly budget of the three-month average plus a 10% buffer.

    Without a budget the suggestion is always offered (given enough history).
    With one, it is only offered when the budget is being exceeded and the
    suggestion differs from it by at least 15%.
    """
    window_start = shift_month(data.current_month, -(BUDGET_WINDOW_MONTHS - 1))
    window_end = shift_month(data.current_month, 1)
    recent = [t for t in data.transactions if window_start <= t.date < window_end]
    if len(recent) < BUDGET_MIN_TRANSACTIONS:
        return None

    monthly_totals: list[float] = []
    months_analyzed: list[str] = []
    current_spending = 0.0
    for offset in range(BUDGET_WINDOW_MONTHS):
        month = shift_month(data.current_month, -offset)
        month_transactions = _in_month(recent, month)
        if not month_transactions:
            continue
        total = _total(month_transactions)
        if offset == 0:
            current_spending = total
        monthly_totals.append(total)
        months_analyzed.append(month.strftime("%Y-%m"))

    if len(monthly_totals) < BUDGET_MIN_MONTHS:
        return None

    average_monthly = mean(monthly_totals)
    recommended = round(average_monthly * BUDGET_BUFFER)
    if recommended < BUDGET_MIN_RECOMMENDATION:
        return None

    name = data.category_name
    budget = _usable_budget(data.current_budget)
    metadata: dict[str, Any] = {
        "category_id": data.category_id,
        "category_name": name,
        "three_month_average": round(average_monthly),
        "recommended_budget": recommended,
        "calculation_explanation": (
            f"Based on 3-month average of ${round(average_monthly)} + 10% buffer"
        ),
        "months_analyzed": months_analyzed,
    }

    if budget is None:
        return InsightCandidate(
            user_id=data.user_id,
            type="budget_recommendation",
            priority=PRIORITY_BUDGET_RECOMMENDATION,
            title=f"Consider a ${recommended} budget for {name}",
            description=(
                f"Based on your 3-month average of ${round(average_monthly)}, consider setting "
                f"a ${recommended} budget for {name}. This gives you a comfortable 10% buffer "
                "while keeping spending mindful."
            ),
            metadata=metadata,
        )

    exceeded = current_spending > budget or average_monthly > budget
    if not exceeded:
        return None
    if abs(recommended - budget) < budget * BUDGET_SIMILARITY_TOLERANCE:
        return None

    metadata.update(
        {
            "current_budget": round(budget, 2),
            "current_spending": round(current_spending, 2),
        }
    )
    return InsightCandidate(
        user_id=data.user_id,
        type="budget_recommendation",
        priority=PRIORITY_BUDGET_RECOMMENDATION,
        title=f"Time to adjust your {name} budget to ${recommended}",
        description=(
            f"Your {name} spending has been running above your ${budget:.0f} budget. "
            f"Based on your 3-month average of ${round(average_monthly)}, a ${recommended} "
            "budget would be more realistic, or look for a few expenses to trim."
        ),
        metadata=metadata,
    )


def flag_unusual_expense(data: RuleInput) -> Optional[InsightCandidate]:
    """Flag the transaction furthest from the category mean when it is an outlier."""
    if len(data.transactions) < OUTLIER_MIN_TRANSACTIONS:
        return None

    amounts = [_amount(t) for t in data.transactions]
    analysis = analyze_spending(amounts)
    average = analysis.mean
    deviation = analysis.std_dev

    outliers = [
        (t, amount)
        for t, amount in zip(data.transactions, amounts)
        if is_outlier(amount, average, deviation, OUTLIER_THRESHOLD)
    ]
    if not outliers:
        return None

    transaction, amount = max(outliers, key=lambda item: abs(item[1] - average))
    direction = "higher" if amount > average else "lower"
    name = data.category_name
    typical = round(average)
    return InsightCandidate(
        user_id=data.user_id,
        type="unusual_expense",
        priority=PRIORITY_UNUSUAL_EXPENSE,
        title=f"Unusual {name} expense: ${amount:.0f}",
        description=(
            f"We noticed an unusual {name} expense of ${amount:.0f} - much {direction} than "
            f"your typical ${typical}. You might want to review this transaction to make "
            "sure everything looks right."
        ),
        metadata={
            "category_id": data.category_id,
            "category_name": name,
            "transaction_amount": round(amount, 2),
            "category_average": typical,
            "standard_deviation": round(deviation),
            "std_devs_from_mean": round((amount - average) / deviation, 1),
            "transaction_id": transaction.id,
            "transaction_date": transaction.date.isoformat(),
        },
    )


def generate_positive_reinforcement(data: RuleInput) -> Optional[InsightCandidate]:
    """Celebrate staying under budget, or a clear drop in spend when there is no budget."""
    current = _in_month(data.transactions, data.current_month)
    if not current:
        return None

    current_spending = _total(current)
    name = data.category_name
    budget = _usable_budget(data.current_budget)

    if budget is not None:
        percent_used = current_spending / budget * 100
        if percent_used >= REINFORCEMENT_BUDGET_USAGE_CEILING:
            return None
        savings = budget - current_spending
        percent_under = 100 - percent_used
        return InsightCandidate(
            user_id=data.user_id,
            type="positive_reinforcement",
            priority=PRIORITY_POSITIVE_REINFORCEMENT,
            title=f"Great job on {name}!",
            description=(
                f"Great job on {name}! You're {round(percent_under)}% under budget this "
                f"month, saving ${round(savings)}. Keep up the excellent work!"
            ),
            metadata={
                "category_id": data.category_id,
                "category_name": name,
                "budget_amount": round(budget, 2),
                "actual_spending": round(current_spending),
                "savings_amount": round(savings),
                "percent_under_budget": round(percent_under),
                "current_month": data.current_month.strftime("%Y-%m"),
            },
        )

    previous_month = shift_month(data.current_month, -1)
    previous = _in_month(data.transactions, previous_month)
    if not previous:
        return None
    comparison = compare_monthly_spending(current_spending, _total(previous))
    previous_spending = comparison.previous
    percent_change = comparison.percent_change
    if percent_change > REINFORCEMENT_DECREASE_THRESHOLD:
        return None

    decrease = round(abs(percent_change))
    return InsightCandidate(
        user_id=data.user_id,
        type="positive_reinforcement",
        priority=PRIORITY_POSITIVE_REINFORCEMENT,
        title=f"Nice work cutting back on {name}!",
        description=(
            f"Your {name} spending is down {decrease}% from last month "
            f"(${current_spending:.0f} vs ${previous_spending:.0f}). Keep it up!"
        ),
        metadata={
            "category_id": data.category_id,
            "category_name": name,
            "current_amount": round(current_spending, 2),
            "previous_amount": round(previous_spending, 2),
            "percent_change": round(percent_change, 1),
            "current_month": data.current_month.strftime("%Y-%m"),
            "previous_month": previous_month.strftime("%Y-%m"),
        },
    )


Rule = Callable[[RuleInput], Optional[InsightCandidate]]

RULES: tuple[Rule, ...] = (
    detect_spending_increase,
    recommend_budget_limit,
    flag_unusual_expense,
    generate_positive_reinforcement,
)


def execute_rules_for_category(data: RuleInput) -> list[InsightCandidate]:
    """Run every rule for one category and return the candidates that fired."""
    candidates: list[InsightCandidate] = []
    for rule in RULES:
        candidate = rule(data)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


__all__ = [
    "InsightCandidate",
    "RULES",
    "RuleInput",
    "detect_spending_increase",
    "execute_rules_for_category",
    "flag_unusual_expense",
    "generate_positive_reinforcement",
    "month_start",
    "recommend_budget_limit",
    "shift_month",
]
