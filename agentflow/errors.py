"""
Error taxonomy for the payment protocol and the paid pipeline
"""

from typing import Any, Optional


class AgentFlowError(Exception):
    """Base class for every protocol and pipeline failure"""

    code = "AGENTFLOW_ERROR"


class PaymentProtocolError(AgentFlowError):
    """A payment header or challenge could not be decoded"""

    code = "PAYMENT_PROTOCOL_ERROR"


class ChallengeMismatch(AgentFlowError):
    """Decoded requirement does not match the expected network or contract"""

    code = "CHALLENGE_MISMATCH"


class SigningRejected(AgentFlowError):
    """The external signer declined to sign"""

    code = "SIGNING_REJECTED"


class VerificationFailed(AgentFlowError):
    """Payment payload is invalid or insufficient"""

    code = "VERIFICATION_FAILED"


class SettlementFailed(AgentFlowError):
    """A verified payment could not be settled"""

    code = "SETTLEMENT_FAILED"


class StepTimeout(AgentFlowError):
    code = "TIMEOUT"

    def __init__(self, label: str, seconds: float):
        super().__init__(f"{label} timed out after {seconds:g}s")
        self.label = label
        self.seconds = seconds


class FacilitatorError(AgentFlowError):
    """The payment facilitator could not be reached or answered garbage"""

    code = "FACILITATOR_ERROR"


class InvalidOperationInput(AgentFlowError):
    """A protected operation rejected its input"""

    code = "INVALID_INPUT"


class PaymentRequestError(AgentFlowError):
    """A protected endpoint answered with a non-success status"""

    code = "REQUEST_FAILED"

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamOperationFailed(PaymentRequestError):
    """The protected operation itself raised; the payment was not settled"""

    code = "UPSTREAM_OPERATION_FAILED"


class StepFailed(AgentFlowError):
    """
    A failure attributed to one pipeline step.

    Everything that goes wrong inside a step is wrapped in this before it
    reaches the progress stream, so the error event can name the step.
    """

    code = "STEP_FAILED"

    def __init__(self, step: str, cause: BaseException):
        label = step.capitalize() if isinstance(step, str) else str(step)
        super().__init__(f"{label} step failed: {error_message(cause)}")
        self.step = step
        self.cause = cause


def error_message(err: Optional[BaseException]) -> str:
    """Human readable message for any exception, never empty"""
    if err is None:
        return "Unknown error"
    message = str(err)
    return message or err.__class__.__name__
