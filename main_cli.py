# main_cli.py
import asyncio

from config import setup_logging
from scenarios import SCENARIOS, GENERAL_CALL_CENTER_TIPS_TITLE, GENERAL_CALL_CENTER_TIPS, Scenario
from session import SessionController
from state import Feedback, MessageSender, TrainingStage

SENDER_LABELS = {
    MessageSender.AI_CALLER: "[Caller]",
    MessageSender.USER_REPRESENTATIVE: "[You]",
    MessageSender.SYSTEM: "[System]",
}


def choose_scenario() -> Scenario:
    print("Choose a training scenario:")
    for i, scenario in enumerate(SCENARIOS, start=1):
        print(f"{i}) {scenario.title} ({scenario.level.value}, {scenario.caller_persona.value})")

    while True:
        choice = input(f"Enter 1-{len(SCENARIOS)}: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(SCENARIOS):
            return SCENARIOS[int(choice) - 1]
        print("Invalid choice, try again.")


def print_feedback(feedback: Feedback) -> None:
    print("\n=== Feedback ===")
    print(f"Score:                 {feedback.score}/100")
    print(f"Response time:         {feedback.response_time_perception}")
    print(f"Tone:                  {feedback.tone_assessment}")
    print(f"Info gathering:        {feedback.prioritization_and_info_gathering}")
    print(f"Problem resolution:    {feedback.problem_resolution_approach}")
    print(f"Overall:               {feedback.overall_comment}")


async def run_cli_simulation():
    controller = SessionController()
    if controller.stage == TrainingStage.ERROR:
        print("Configuration Error:", controller.error)
        return

    scenario = choose_scenario()
    await controller.select_scenario(scenario.id)

    if controller.stage == TrainingStage.ERROR:
        print("Training Scenario Error:", controller.error)
        controller.close()
        return

    print("\n=== Call Center Training Simulation ===")
    print("Scenario:           ", scenario.title)
    print("Caller:             ", controller.setup.caller_name, f"({scenario.caller_persona.value})")
    print("Mood:               ", scenario.level.value)
    print("Description:        ", scenario.description)
    print("=======================================\n")
    print(GENERAL_CALL_CENTER_TIPS_TITLE)
    for tip in GENERAL_CALL_CENTER_TIPS:
        print(" -", tip)
    print()

    shown = 0
    print(f" You are the call center REPRESENTATIVE. The caller will give feedback "
          f"after {controller.threshold} of your messages.\n")

    try:
        while True:
            for message in controller.messages[shown:]:
                if message.sender != MessageSender.USER_REPRESENTATIVE:
                    print(SENDER_LABELS[message.sender], message.text)
            shown = len(controller.messages)

            if controller.stage == TrainingStage.FEEDBACK_DISPLAY:
                print_feedback(controller.feedback)
                break

            user_text = input("\nYour reply (or 'quit'): ").strip()
            if user_text.lower() in {"quit", "exit"}:
                print("Simulation ended by user.")
                controller.end_scenario()
                break

            await controller.submit(user_text)
    finally:
        controller.close()

    print("\n CLI simulation complete.")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_cli_simulation())
