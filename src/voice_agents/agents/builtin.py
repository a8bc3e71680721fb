"""Agent sets shipped with the application."""

from typing import Any

from voice_agents.agents.models import Agent, AgentSet, BuiltinSet, Tool

CUSTOMER_SUPPORT_COMPANY = "Northwind Outfitters"
PERSONAL_COACH_COMPANY = "Summit Wellness"


async def _lookup_order(args: dict[str, Any]) -> dict[str, Any]:
    order_id = str(args.get("order_id", ""))
    return {
        "order_id": order_id,
        "status": "shipped" if order_id else "unknown",
        "carrier": "UPS" if order_id else None,
    }


async def _log_goal(args: dict[str, Any]) -> dict[str, Any]:
    return {"saved": True, "goal": args.get("goal", ""), "deadline": args.get("deadline")}


_ORDER_LOOKUP = Tool(
    name="lookup_order",
    description="Look up the shipping status of an order by its order id.",
    parameters={
        "type": "object",
        "properties": {"order_id": {"type": "string", "description": "Order number"}},
        "required": ["order_id"],
        "additionalProperties": False,
    },
    handler=_lookup_order,
)

_LOG_GOAL = Tool(
    name="log_goal",
    description="Record a goal the user committed to, with an optional deadline.",
    parameters={
        "type": "object",
        "properties": {
            "goal": {"type": "string", "description": "The goal in the user's words"},
            "deadline": {"type": "string", "description": "ISO date, if given"},
        },
        "required": ["goal"],
        "additionalProperties": False,
    },
    handler=_log_goal,
)

customer_support = AgentSet(
    key="customerSupport",
    provenance=BuiltinSet(name="customerSupport", company_name=CUSTOMER_SUPPORT_COMPANY),
    agents=(
        Agent(
            name="greeter",
            voice="sage",
            instructions=(
                f"You greet callers for {CUSTOMER_SUPPORT_COMPANY}, find out what they need "
                "and transfer them to the right specialist. Keep it brief."
            ),
            handoff_description="Greets the caller and routes the request.",
            handoff_targets=frozenset({"orders", "returns"}),
        ),
        Agent(
            name="orders",
            voice="alloy",
            instructions=(
                "You help with order status and delivery questions. Ask for the order "
                "number and use lookup_order before answering."
            ),
            handoff_description="Order status and delivery questions.",
            tools=(_ORDER_LOOKUP,),
            handoff_targets=frozenset({"returns", "greeter"}),
        ),
        Agent(
            name="returns",
            voice="echo",
            instructions=(
                "You handle returns and exchanges. Explain the 30-day return policy and "
                "collect the order number and reason for return."
            ),
            handoff_description="Returns, refunds and exchanges.",
            handoff_targets=frozenset({"orders", "greeter"}),
        ),
    ),
)

personal_coach = AgentSet(
    key="personalCoach",
    provenance=BuiltinSet(name="personalCoach", company_name=PERSONAL_COACH_COMPANY),
    agents=(
        Agent(
            name="coach",
            voice="shimmer",
            instructions=(
                "You are an upbeat personal coach. Help the user set one concrete goal for "
                "the week and record it with log_goal. Hand nutrition questions to the "
                "nutritionist."
            ),
            handoff_description="General coaching and goal setting.",
            tools=(_LOG_GOAL,),
            handoff_targets=frozenset({"nutritionist"}),
        ),
        Agent(
            name="nutritionist",
            voice="fable",
            instructions=(
                "You give practical, non-medical nutrition advice. Hand back to the coach "
                "once the food question is answered."
            ),
            handoff_description="Everyday nutrition questions.",
            handoff_targets=frozenset({"coach"}),
        ),
    ),
)

BUILTIN_AGENT_SETS: dict[str, AgentSet] = {
    customer_support.key: customer_support,
    personal_coach.key: personal_coach,
}

DEFAULT_AGENT_SET_KEY = personal_coach.key
