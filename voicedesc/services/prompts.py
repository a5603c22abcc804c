"""
Accessibility-oriented prompts for the vision provider.
"""

_FOCUS = """Focus on:
- People: their actions, expressions, clothing, and positioning
- Setting: environment, lighting, background elements
- Objects: important items, their movement or interaction
- Visual story: what's happening, the mood, significant details"""


def segment_prompt(start_offset: float, end_offset: float) -> str:
    """Prompt for one segment of a video, described from its midpoint frame."""
    return (
        'You are creating audio descriptions for visually impaired audiences. '
        f'Analyze this video frame from timestamp {start_offset:g} to {end_offset:g} seconds '
        'and provide a detailed, descriptive narration.\n\n'
        f'{_FOCUS}\n\n'
        'Create a natural, engaging description suitable for audio narration. Be specific and vivid. '
        'Keep it under 60 words but make every word count for accessibility.'
    )


def holistic_video_prompt(duration_seconds: float = None) -> str:
    """Prompt for a single-pass description of a whole short video."""
    span = f' of a {duration_seconds:g} second video' if duration_seconds else ' of a video'
    return (
        'You are creating audio descriptions for visually impaired audiences. '
        f'This frame is representative{span}. Describe the scene as a whole.\n\n'
        f'{_FOCUS}\n\n'
        'Write a natural narration of no more than 120 words.'
    )


def overview_prompt() -> str:
    """Prompt for the opening overview that precedes segment-by-segment narration."""
    return (
        'You are creating audio descriptions for visually impaired audiences. '
        'Give a short overview of the setting and main subjects of this video, '
        'as an introduction before a scene-by-scene description. Keep it under 40 words.'
    )


def image_prompt() -> str:
    """Prompt for a still image."""
    return (
        'You are creating audio descriptions for visually impaired audiences. '
        'Describe this image in detail.\n\n'
        f'{_FOCUS}\n\n'
        'Start with the overall scene, then the most important details. '
        'Write a natural narration of no more than 150 words.'
    )
