"""
Condition Evaluation Service
Evaluates the rule chain of a condition node against the run's recipient.
"""
from typing import List, Optional

# Utils
from utils.log_utils import LogUtil

# Models
from models.flow_data import ConditionRule


class ConditionEvaluationService:
    """
    Rules are folded strictly left to right, there is no AND-before-OR precedence:
    "A OR B AND C" is evaluated as "(A OR B) AND C".
    """

    def __init__(self, log_util: Optional[LogUtil] = None):
        self.log_util = log_util

    def _trace(self, message: str):
        if self.log_util:
            self.log_util.debug(service_name="ConditionEvaluationService", message=f"[CONDITION] {message}")

    def evaluate_rule(self, rule: ConditionRule, subject: str) -> bool:
        target_value = (subject or "").strip().lower()
        compare_value = (rule.value or "").strip().lower()

        if rule.operator == "equals":
            return target_value == compare_value
        elif rule.operator == "not_equals":
            return target_value != compare_value
        elif rule.operator == "includes":
            return compare_value in target_value
        elif rule.operator == "starts_with":
            return target_value.startswith(compare_value)
        elif rule.operator == "ends_with":
            return target_value.endswith(compare_value)

        self._trace(f"Unknown operator '{rule.operator}', rule evaluates to False")
        return False

    def evaluate_condition(self, rules: List[ConditionRule], subject: str) -> bool:
        self._trace(f"Starting evaluation for subject '{subject}' with {len(rules or [])} rule(s)")

        if not rules:
            self._trace("No rules found, returning False")
            return False

        # The first rule seeds the result, its join is ignored
        result = self.evaluate_rule(rules[0], subject)
        self._trace(f"Rule 1 ({rules[0].operator} '{rules[0].value}'): {result}")

        for index, rule in enumerate(rules[1:], start=2):
            rule_result = self.evaluate_rule(rule, subject)
            previous = result
            if rule.join == "AND":
                result = result and rule_result
            elif rule.join == "OR":
                result = result or rule_result
            self._trace(
                f"Rule {index} [{rule.join}] ({rule.operator} '{rule.value}'): "
                f"{previous} -> {result} (rule output: {rule_result})"
            )

        self._trace(f"Final evaluation result: {result}")
        return result
