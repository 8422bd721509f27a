"""
Domain package for the Blog service.

Cross-cutting request handling that is not tied to one route, chiefly the
access gate that classifies routes and enforces sessions, privileges and
rate limits.
"""

from .access_gate import (
    AccessGate,
    AccessGateMiddleware,
    GateAction,
    GateDecision,
    GateRequest,
    GateRoutes,
    RouteClass,
)

__all__ = [
    "AccessGate",
    "AccessGateMiddleware",
    "GateAction",
    "GateDecision",
    "GateRequest",
    "GateRoutes",
    "RouteClass",
]
