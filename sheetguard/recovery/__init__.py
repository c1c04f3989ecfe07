"""Recovery layer — external service, secondary model and rule-based strategies."""

from sheetguard.recovery.base import RecoveryStrategy
from sheetguard.recovery.external import ExternalNormalizerClient, ExternalServiceStrategy
from sheetguard.recovery.hidden_parser import HiddenParser
from sheetguard.recovery.rules import (
    ActionVerbGrammar,
    NumberGrammar,
    RangeGrammar,
    RowDataGrammar,
    RuleBasedStrategy,
    SpreadsheetIdGrammar,
    TabNameGrammar,
    ValueGrammar,
)
from sheetguard.recovery.secondary_model import SecondaryModelStrategy

__all__ = [
    "RecoveryStrategy",
    "HiddenParser",
    # Strategies, in attempt order
    "ExternalServiceStrategy",
    "ExternalNormalizerClient",
    "SecondaryModelStrategy",
    "RuleBasedStrategy",
    # Grammars
    "ActionVerbGrammar",
    "SpreadsheetIdGrammar",
    "TabNameGrammar",
    "RangeGrammar",
    "ValueGrammar",
    "RowDataGrammar",
    "NumberGrammar",
]
