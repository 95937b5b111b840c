from agentflow.gateway.resource_gate import Challenge, GateOutcome, Proceed, ResourceGate

__all__ = ["Challenge", "GateOutcome", "Proceed", "ResourceGate"]
