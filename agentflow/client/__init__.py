from agentflow.client.paid_caller import PaidCaller, PaidResult

__all__ = ["PaidCaller", "PaidResult"]
