"""
AgentFlow
Pay-per-step agent pipeline over the x402 protocol on Arc
"""

__version__ = "0.1.0"
