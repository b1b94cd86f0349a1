"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class AnswerType(str, Enum):
    """Declared answer type of a form question (Airtable field types)"""
    SINGLE_LINE_TEXT = "singleLineText"
    MULTILINE_TEXT = "multilineText"
    SINGLE_SELECT = "singleSelect"
    MULTIPLE_SELECTS = "multipleSelects"
    MULTIPLE_ATTACHMENTS = "multipleAttachments"
    # Externally-typed scalars, passed through unchanged
    NUMBER = "number"
    EMAIL = "email"
    URL = "url"
    PHONE_NUMBER = "phoneNumber"
    DATE = "date"
    DATE_TIME = "dateTime"
    CHECKBOX = "checkbox"
    RATING = "rating"
    CURRENCY = "currency"
    PERCENT = "percent"


# Types a form owner may place on a form
AUTHORABLE_ANSWER_TYPES = frozenset({
    AnswerType.SINGLE_LINE_TEXT.value,
    AnswerType.MULTILINE_TEXT.value,
    AnswerType.SINGLE_SELECT.value,
    AnswerType.MULTIPLE_SELECTS.value,
    AnswerType.MULTIPLE_ATTACHMENTS.value,
})

TEXT_ANSWER_TYPES = frozenset({
    AnswerType.SINGLE_LINE_TEXT.value,
    AnswerType.MULTILINE_TEXT.value,
})


class ConditionOperator(str, Enum):
    """Operators usable in a visibility condition"""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"


class ConditionLogic(str, Enum):
    """How conditions of a rule are combined"""
    AND = "AND"
    OR = "OR"


class SubscriptionState(str, Enum):
    """Lifecycle state of a change-notification subscription"""
    REGISTERING = "REGISTERING"
    ACTIVE = "ACTIVE"
    RENEWING = "RENEWING"
    RETIRED = "RETIRED"


class SubmissionSource(str, Enum):
    """Where a submission came from"""
    WEB = "web"
    API = "api"
