# scenarios.py
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional

from config import MAX_USER_MESSAGES_BEFORE_FEEDBACK
from personas import CallerPersona, ScenarioLevel, persona_description

ORDER_NUMBER_PLACEHOLDER = "[ORDER_NUMBER]"
ACCOUNT_NUMBER_PLACEHOLDER = "[ACCOUNT_NUMBER]"

AI_ORDER_NUMBER_PREFIX = "ORD-"
AI_CALLER_NAME_OPTIONS = ["Alex Smith", "Pat Jones", "Jamie Doe", "Chris Williams", "Jordan Brown"]

# Sent when a scenario has no literal opening line
START_CONVERSATION_PROMPT = "Please start the conversation based on your persona and scenario."


@dataclass(frozen=True)
class Scenario:
    id: str
    level: ScenarioLevel
    title: str
    description: str                 # shown on the selection screen
    caller_persona: CallerPersona
    caller_problem: str              # detailed problem for the AI, with placeholders
    initial_caller_message: Optional[str] = None


@dataclass(frozen=True)
class ScenarioSetup:
    """Per-session values generated when a scenario is selected."""
    scenario: Scenario
    caller_name: str
    order_number: str
    account_number: str
    problem: str
    system_instruction: str
    opening_line: Optional[str]


# ---- Seed scenarios ----

SCENARIOS: List[Scenario] = [
    Scenario(
        id="level1-confused-order",
        level=ScenarioLevel.CONFUSED,
        title="Confused About Order Status",
        description="A customer is confused about their recent order and needs clarification.",
        caller_persona=CallerPersona.POLITE_ELDERLY,
        caller_problem=(
            "You are confused about an email you received regarding your recent order "
            "(Order # [ORDER_NUMBER]). You thought it was cancelled, but the email says it "
            "shipped. You need help understanding what is going on."
        ),
        initial_caller_message=(
            "Oh, hello dear. I hope you can help me. I received an email about my order, "
            "[ORDER_NUMBER], and I'm a bit muddled. I thought I cancelled it, but now it "
            "says it's shipped?"
        ),
    ),
    Scenario(
        id="level2-annoyed-delivery",
        level=ScenarioLevel.SLIGHTLY_ANNOYED,
        title="Late Delivery Inquiry",
        description="A customer is slightly annoyed because their package is late.",
        caller_persona=CallerPersona.TIRED_MOM,
        caller_problem=(
            "Your package (Order # [ORDER_NUMBER]) was supposed to arrive three days ago, "
            "and you're juggling a lot with kids at home. You're looking for an update and "
            "are a bit frustrated with the delay."
        ),
        initial_caller_message=(
            "Hi, I'm calling about my order, [ORDER_NUMBER]. It was supposed to be here "
            "three days ago, and frankly, with everything else I'm managing, this is just an "
            "extra headache I don't need. Can you tell me where it is?"
        ),
    ),
    Scenario(
        id="level3-annoyed-billing",
        level=ScenarioLevel.ANNOYED,
        title="Incorrect Billing Charge",
        description="A customer is annoyed about an incorrect charge on their bill.",
        caller_persona=CallerPersona.STRESSED_WORKER,
        caller_problem=(
            "You've been incorrectly charged on your last bill for a service you didn't "
            "subscribe to (Order related to account # [ACCOUNT_NUMBER]). You've been very "
            "busy at work, and this is an unwelcome surprise. You want it fixed immediately."
        ),
        initial_caller_message=(
            "Yeah, hi. I've got a problem with my latest bill, account [ACCOUNT_NUMBER]. "
            "There's a charge on here for something I never signed up for, and I'm really "
            "not happy about it. I need this sorted out now."
        ),
    ),
    Scenario(
        id="level4-angry-product",
        level=ScenarioLevel.ANGRY,
        title="Defective Product Received",
        description=(
            "A customer is angry because they received a defective product and had a bad "
            "experience."
        ),
        caller_persona=CallerPersona.ENTITLED_CUSTOMER,
        caller_problem=(
            "The expensive gadget you ordered (Order # [ORDER_NUMBER]) arrived broken. This "
            "is unacceptable, and you feel your time has been wasted. You demand a "
            "replacement and compensation for your trouble."
        ),
        initial_caller_message=(
            "This is outrageous! I paid good money for order [ORDER_NUMBER], and it arrived "
            "completely broken! This is the worst customer service I've ever experienced. "
            "What are you going to do about this?!"
        ),
    ),
    Scenario(
        id="level2-sarcastic-teen-return",
        level=ScenarioLevel.SLIGHTLY_ANNOYED,
        title="Return Policy Confusion",
        description='A sarcastic teen is "confused" (annoyed) about the return policy.',
        caller_persona=CallerPersona.SARCASTIC_TEEN,
        caller_problem=(
            "You want to return an item (Order # [ORDER_NUMBER]) you bought last month, but "
            "the website's return policy is 'like, totally confusing.' You're pretty sure "
            "you should be able to return it and are being difficult."
        ),
        initial_caller_message=(
            "Ugh, hi. So, like, I bought this thing, order [ORDER_NUMBER], and I want to "
            "return it? But your website is, like, super unhelpful. Can I return it or what?"
        ),
    ),
]

GENERAL_CALL_CENTER_TIPS_TITLE = "Call Center Best Practices:"
GENERAL_CALL_CENTER_TIPS = [
    "Listen actively to the customer's concerns.",
    "Empathize with their situation, even if you can't solve it immediately.",
    "Speak clearly and maintain a professional tone.",
    "Verify the caller's identity and relevant information (name, account/order number).",
    "Clearly explain next steps or solutions.",
    "If you need to put someone on hold, ask for permission and provide a timeframe.",
    "Document the call accurately.",
    "Aim for first-call resolution when possible.",
]


def get_scenario(scenario_id: str) -> Scenario:
    for scenario in SCENARIOS:
        if scenario.id == scenario_id:
            return scenario
    raise KeyError(f"Unknown scenario id: {scenario_id}")


def generate_order_number(rng: random.Random | None = None) -> str:
    rng = rng or random
    return f"{AI_ORDER_NUMBER_PREFIX}{rng.randint(100000, 999999)}"


def generate_account_number(rng: random.Random | None = None) -> str:
    rng = rng or random
    return str(rng.randint(10000000, 99999999))


def fill_placeholders(text: str, order_number: str, account_number: str) -> str:
    return (
        text.replace(ORDER_NUMBER_PLACEHOLDER, order_number)
        .replace(ACCOUNT_NUMBER_PLACEHOLDER, account_number)
    )


def build_caller_system_instruction(
    persona: CallerPersona,
    emotional_state: ScenarioLevel,
    problem: str,
    caller_name: str,
    max_user_messages: int = MAX_USER_MESSAGES_BEFORE_FEEDBACK,
) -> str:
    """
    System instruction for the model playing the customer. It also tells the
    model to switch to the JSON feedback format after ``max_user_messages``
    representative messages.
    """
    return f"""
You are a customer calling a call center.
Your name is {caller_name}.
Your assigned persona is: {persona.value}.
Your emotional state is: {emotional_state.value}.
The reason for your call is: {problem}

Persona:
{persona_description(persona)}

You will interact with the user, who is playing the role of a call center representative.
Initiate the conversation with your first line based on your persona, emotion, and scenario.
Respond to the representative's messages naturally, staying in character.
Keep your responses concise, typically 1-3 sentences.

IMPORTANT: After the representative has sent exactly {max_user_messages} messages, your VERY NEXT
response MUST be a JSON object detailing your feedback on their performance.
Do not add any other text before or after this JSON object.

The JSON object must have this exact structure:
{{
  "score": number (0-100, assess overall performance),
  "feedback": {{
    "response_time_perception": "string (e.g., 'Responded promptly', 'Noticeable pauses before responding')",
    "tone_assessment": "string (e.g., 'Professional and empathetic', 'Appeared dismissive or rushed')",
    "prioritization_and_info_gathering": "string (e.g., 'Effectively gathered name, order and issue', 'Did not ask for the order number')",
    "problem_resolution_approach": "string (e.g., 'Took clear steps towards resolution', 'Did not offer a clear path to resolution')",
    "overall_comment": "string (a concise, constructive summary)"
  }}
}}

Base your feedback on:
- Response Time Perception: did the conversation feel like it moved efficiently or stalled?
  (You don't have actual timers, so this is a perception.)
- Tone: were they polite, empathetic, condescending, rude?
- Prioritization & Info Gathering: did they ask for crucial information (name, account/order
  number, verify details) at appropriate times and address the core issue?
- Problem Resolution Approach: did they guide the conversation towards a solution or offer
  appropriate next steps?

Do not break character or mention you are an AI until it's time to provide the JSON feedback.
Let's begin. You are {persona.value} {caller_name}, and you are {emotional_state.value} about
your issue. Make your first statement to the call center representative.
"""


def prepare_scenario(
    scenario: Scenario,
    rng: random.Random | None = None,
    max_user_messages: int = MAX_USER_MESSAGES_BEFORE_FEEDBACK,
) -> ScenarioSetup:
    """
    Generate the per-session values for a scenario: caller name, order and
    account numbers, the filled-in problem, system instruction and opener.
    """
    rng = rng or random
    caller_name = rng.choice(AI_CALLER_NAME_OPTIONS)
    order_number = generate_order_number(rng)
    account_number = generate_account_number(rng)
    problem = fill_placeholders(scenario.caller_problem, order_number, account_number)

    opening_line = None
    if scenario.initial_caller_message:
        opening_line = fill_placeholders(
            scenario.initial_caller_message, order_number, account_number
        )

    return ScenarioSetup(
        scenario=scenario,
        caller_name=caller_name,
        order_number=order_number,
        account_number=account_number,
        problem=problem,
        system_instruction=build_caller_system_instruction(
            scenario.caller_persona,
            scenario.level,
            problem,
            caller_name,
            max_user_messages,
        ),
        opening_line=opening_line,
    )
