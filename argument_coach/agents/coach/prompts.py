"""
Prompt Templates for the Coach Agent.

Compact English and Spanish material. The coaching tone itself is left to
the model; these prompts pin down the JSON contract and the step rules.
"""

from typing import Dict, Mapping

from argument_coach.steps import Step, next_step

LANGUAGE_NAMES = {"en": "English", "es": "Spanish"}

STEP_NAMES: Dict[str, Dict[Step, str]] = {
    "en": {
        Step.CLAIM: "Claim",
        Step.GROUNDS: "Grounds",
        Step.WARRANT: "Warrant",
        Step.GROUNDS_BACKING: "Grounds Backing",
        Step.WARRANT_BACKING: "Warrant Backing",
        Step.QUALIFIER: "Qualifier",
        Step.REBUTTAL: "Rebuttal",
    },
    "es": {
        Step.CLAIM: "Afirmación",
        Step.GROUNDS: "Fundamentos",
        Step.WARRANT: "Garantía",
        Step.GROUNDS_BACKING: "Respaldo de los fundamentos",
        Step.WARRANT_BACKING: "Respaldo de la garantía",
        Step.QUALIFIER: "Calificador",
        Step.REBUTTAL: "Refutación",
    },
}

STEP_INFO: Dict[Step, Dict[str, str]] = {
    Step.CLAIM: {
        "definition": "The main assertion you want your audience to accept. It should be debatable, not a simple fact.",
        "example": "Universities should require all students to take a course in critical thinking.",
        "anti_pattern": 'Do NOT accept claims that are actually evidence ("Studies show X") or simple facts.',
    },
    Step.GROUNDS: {
        "definition": "The evidence, data or observations that support the claim.",
        "example": "A 2023 survey found that 78% of employers rate critical thinking as the skill they value most.",
        "anti_pattern": "Do NOT accept abstract principles as grounds. Grounds should be specific and verifiable.",
    },
    Step.WARRANT: {
        "definition": 'The logical bridge from grounds to claim, often a general principle or "if-then" statement.',
        "example": "If employers value a skill highly, universities should prioritize teaching it.",
        "anti_pattern": "Do NOT accept warrants that merely restate the claim or the grounds.",
    },
    Step.GROUNDS_BACKING: {
        "definition": "Support for the credibility of the grounds: sources, methodology, authority.",
        "example": "The survey was run by the National Association of Colleges and Employers, which has tracked employers since 1956.",
        "anti_pattern": "Do NOT accept backing that names no source, authority or method.",
    },
    Step.WARRANT_BACKING: {
        "definition": "Support for why the warrant's principle is valid: laws, theories, shared values.",
        "example": "Most university mission statements name career and civic preparation as their primary purpose.",
        "anti_pattern": "Do NOT accept backing that does not explain why the warrant holds.",
    },
    Step.QUALIFIER: {
        "definition": "Words indicating how strong the claim is. Few claims are absolute.",
        "example": "In most cases",
        "anti_pattern": "Be cautious of claims presented as absolute truths.",
    },
    Step.REBUTTAL: {
        "definition": "Exceptions, counter-arguments or conditions under which the claim might not hold.",
        "example": "This may not apply to specialized technical programs whose curricula are already full.",
        "anti_pattern": "Do NOT accept rebuttals that are dismissive.",
    },
}

WELCOME_MESSAGES = {
    "en": (
        "Welcome! Let's build your argument one step at a time. "
        "First, what is the main claim you want your audience to accept?"
    ),
    "es": (
        "¡Bienvenido! Construyamos tu argumento paso a paso. "
        "Primero, ¿cuál es la afirmación principal que quieres que tu audiencia acepte?"
    ),
}

DEFAULT_ARGUMENT_NAMES = {"en": "Untitled argument", "es": "Argumento sin título"}


COACH_SYSTEM_PROMPT = """You are an argument coach: a patient tutor who helps the user build a seven-part argument (claim, grounds, warrant, grounds backing, warrant backing, qualifier, rebuttal). Your role is to TEACH, not to write the argument for them.{language_instruction}

## Core behaviors
- Ask guiding questions. Keep replies to 2-3 sentences plus one question.
- Focus only on the current step. Never jump ahead.
- Only include "proposedUpdate" when the user confirms a suggestion, explicitly asks you to rewrite or improve their text, or their text is already strong (confidence >= 0.8).
- If this is the user's first attempt at the step, prefer feedback without a proposal.

## Current step: {step_name} ("{step}")
Definition: {definition}
Good example: "{example}"
Watch out for: {anti_pattern}

## Current draft
{draft_context}

## Response format
Respond with ONE JSON object and nothing else:
{{
  "assistantText": "feedback, 2-3 sentences",
  "step": "{step}",
  "confidence": 0.0,
  "proposedUpdate": {{"field": "{step}", "value": "short text in the user's voice", "rationale": "why it fits"}},
  "nextQuestion": "one guiding question",
  "shouldAdvance": false,
  "nextStep": {next_step_value},
  "isComplete": false
}}
"proposedUpdate" and "nextStep" are optional.

## Step rules
- Order: claim -> grounds -> warrant -> groundsBacking -> warrantBacking -> qualifier -> rebuttal.
- When shouldAdvance is true you MUST set nextStep to {next_step_value}.
- On "rebuttal" never set shouldAdvance; set isComplete=true once all seven parts are solid.
"""

LANGUAGE_INSTRUCTION = (
    "\n\nIMPORTANT: write assistantText, nextQuestion and rationale in {language}. "
    "Keep every JSON key and every step value in English."
)


def build_draft_context(fields: Mapping[Step, str], locale: str = "en") -> str:
    names = STEP_NAMES.get(locale, STEP_NAMES["en"])
    lines = []
    for step, name in names.items():
        value = (fields.get(step) or "").strip()
        if value:
            preview = value[:100] + ("..." if len(value) > 100 else "")
            lines.append(f'[x] {name}: "{preview}"')
        else:
            lines.append(f"[ ] {name}: (empty)")
    return "\n".join(lines)


def build_system_prompt(current_step: Step, fields: Mapping[Step, str], locale: str = "en") -> str:
    """Render the system prompt for one coaching turn."""
    current_step = Step(current_step)
    info = STEP_INFO[current_step]
    upcoming = next_step(current_step)
    language_instruction = (
        LANGUAGE_INSTRUCTION.format(language=LANGUAGE_NAMES[locale]) if locale != "en" else ""
    )
    return COACH_SYSTEM_PROMPT.format(
        language_instruction=language_instruction,
        step_name=STEP_NAMES.get(locale, STEP_NAMES["en"])[current_step],
        step=current_step.value,
        definition=info["definition"],
        example=info["example"],
        anti_pattern=info["anti_pattern"],
        draft_context=build_draft_context(fields, locale),
        next_step_value=f'"{upcoming.value}"' if upcoming else "null",
    )


def welcome_message(locale: str = "en") -> str:
    return WELCOME_MESSAGES.get(locale, WELCOME_MESSAGES["en"])


def default_argument_name(locale: str = "en") -> str:
    return DEFAULT_ARGUMENT_NAMES.get(locale, DEFAULT_ARGUMENT_NAMES["en"])
