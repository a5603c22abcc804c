"""
Text clean-up for narrations: description tidying, speech preparation and alt text.
"""
import re

ALT_TEXT_MAX_LENGTH = 125

# Boilerplate that vision models open descriptions with
_FILLER = re.compile(
    r'\b(the scene shows|we can see|there is|there are|in this scene|this video shows'
    r'|appears to be|seems to|looks like)\b',
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r'\s+')
_LEADING_PUNCTUATION = re.compile(r'^\s*[,;]\s*')
_TRAILING_PUNCTUATION = re.compile(r'\s*[,;]\s*$')
_SPACE_BEFORE_PUNCTUATION = re.compile(r'\s+([,;.!?])')

# Abbreviations read out in full; the lookahead lets them end a sentence
_ABBREVIATIONS = [
    (re.compile(r'\bU\.S\.(?:A\.?)?(?!\w)', re.IGNORECASE), 'United States'),
    (re.compile(r'\bUK\b'), 'United Kingdom'),
    (re.compile(r'\be\.g\.(?!\w)', re.IGNORECASE), 'for example'),
    (re.compile(r'\bi\.e\.(?!\w)', re.IGNORECASE), 'that is'),
    (re.compile(r'\betc\.(?!\w)', re.IGNORECASE), 'etcetera'),
]
_UNSPEAKABLE = re.compile(r'[\[\]{}<>]')

_FIRST_SENTENCE = re.compile(r'^(.+?[.!?])(?:\s|$)')


def clean_description(text: str) -> str:
    """
    Tidy one model-written description for narration.

    Strips filler phrases ("we can see", "there is", ...), collapses
    whitespace, capitalizes the first letter and makes sure the text ends
    with terminal punctuation. Blank input stays blank.
    """
    text = _FILLER.sub('', text or '')
    text = _WHITESPACE.sub(' ', text)
    text = _SPACE_BEFORE_PUNCTUATION.sub(r'\1', text)
    text = _LEADING_PUNCTUATION.sub('', text)
    text = _TRAILING_PUNCTUATION.sub('', text).strip()
    if not text:
        return ''

    text = text[0].upper() + text[1:]
    if text[-1] not in '.!?':
        text += '.'
    return text


def prepare_for_speech(text: str) -> str:
    """Normalize narration text before it is chunked and spoken."""
    text = _WHITESPACE.sub(' ', text or '')
    for pattern, replacement in _ABBREVIATIONS:
        text = pattern.sub(replacement, text)
    text = _UNSPEAKABLE.sub('', text)
    return _WHITESPACE.sub(' ', text).strip()


def make_alt_text(description: str, max_length: int = ALT_TEXT_MAX_LENGTH) -> str:
    """
    Short alternative text for an image: the first sentence of its description.

    Anything longer than ``max_length`` is cut and ends in an ellipsis.
    """
    text = clean_description(description)
    match = _FIRST_SENTENCE.match(text)
    if match:
        text = match.group(1)
    if len(text) > max_length:
        text = text[:max_length - 3].rstrip() + '...'
    return text
