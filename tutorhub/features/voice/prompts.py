"""Assistant instructions and voice selection for companions."""

from typing import Dict

from tutorhub.models.companion import TeachingStyle, VoiceType

VOICE_CONFIGS: Dict[VoiceType, Dict[str, str]] = {
    VoiceType.FEMALE: {"provider": "11labs", "voiceId": "sarah"},
    VoiceType.MALE: {"provider": "11labs", "voiceId": "adam"},
}

_BASE = """You are {name}, an AI tutor for {subject}.

Your role:
- Teach {subject} in a {style} style
- Focus on {topic}
- Run {duration}-minute sessions and adapt to the student's pace

How to teach:
- Find out what the student already knows before introducing new material
- Split hard ideas into small steps and check understanding after each
- Use examples that fit {subject}
- Invite questions and answer them plainly
- Close with a short recap and a suggested next step"""

_STYLE_NOTES = {
    TeachingStyle.CASUAL: """

Tone:
- Friendly and conversational
- Light humour is fine
- Everyday analogies over jargon""",
    TeachingStyle.FORMAL: """

Tone:
- Precise, academic language
- Structured explanations
- Correct terminology throughout""",
}


def build_instructions(name: str, subject: str, topic: str, style: TeachingStyle, duration: int) -> str:
    style = TeachingStyle(style)
    base = _BASE.format(name=name, subject=subject, topic=topic, style=style.value, duration=duration)
    return base + _STYLE_NOTES[style]


def voice_config(voice: VoiceType) -> Dict[str, str]:
    """Voice settings for the provider; unknown values fall back to female."""
    try:
        return dict(VOICE_CONFIGS[VoiceType(voice)])
    except ValueError:
        return dict(VOICE_CONFIGS[VoiceType.FEMALE])
