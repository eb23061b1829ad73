"""
Prompt construction: weaves a memory's inputs into a Ukiyo-e image prompt.
"""
from typing import Optional

from models.gallery import SLOT_COUNT, UserInputs

ATMOSPHERE_PHRASES = {
    "sunny": "bathed in brilliant sunlight with crisp shadows and vibrant clarity",
    "golden": "illuminated by the warm, honey-colored light of the golden hour",
    "overcast": "shrouded in moody, overcast skies with soft, diffused light",
    "rainy": "veiled in gentle rain and mist, creating ethereal atmosphere",
    "night": "embraced by the deep blues and blacks of night, with subtle moonlight",
}

FEELING_PHRASES = {
    "peaceful": "serene tranquility",
    "awe": "breathtaking majesty",
    "energetic": "dynamic vitality",
    "romantic": "tender intimacy",
    "nostalgic": "wistful remembrance",
    "melancholy": "poignant beauty",
}

SEASON_PHRASES = {
    "spring": "in spring, with fresh blossoms and tender green leaves",
    "summer": "in high summer, with lush foliage and long luminous days",
    "autumn": "in autumn, with crimson maples and drifting leaves",
    "winter": "in winter, under a hush of fresh snow",
}

# One composition direction per gallery slot
COMPOSITIONS = (
    "A sweeping panoramic view with dramatic perspective and a distant horizon.",
    "An intimate close view that lingers on the central subject.",
    "A vertical composition framed by foreground elements, in the manner of the Hundred Famous Views of Edo.",
    "A quiet scene with small figures going about their day, giving a sense of scale and story.",
)

ASPECT_RATIO_SIZES = {
    "1:1": "4096*4096",
    "3:4": "3072*4096",
    "4:3": "4096*3072",
}
DEFAULT_SIZE = "4096*4096"


def aspect_ratio_to_size(aspect_ratio: str) -> str:
    return ASPECT_RATIO_SIZES.get(aspect_ratio, DEFAULT_SIZE)


def feeling_phrase(feelings: list[str]) -> str:
    return " and ".join(FEELING_PHRASES.get(f.lower(), f) for f in feelings if f)


def build_prompt(inputs: UserInputs) -> str:
    atmosphere = ATMOSPHERE_PHRASES.get(inputs.atmosphere, inputs.atmosphere)
    season = SEASON_PHRASES.get(inputs.season.lower(), inputs.season) if inputs.season else ""

    base = (
        "Ukiyo-e woodblock print in the refined and atmospheric style of Hiroshige, "
        f"capturing a personal memory of {inputs.location} in Japan"
    )
    base += f" {season}. " if season else ". "

    narrative = (
        f"The scene is {atmosphere}, focusing on {inputs.focus} as the central element "
        "that draws the viewer's eye. "
        f"A distinctive detail enhances the composition: {inputs.detail}. "
        f"The entire image evokes a feeling of {feeling_phrase(inputs.feelings) or 'quiet reflection'}, "
        "rendered with the characteristic flat color planes, bold outlines, and masterful use of "
        "negative space found in classical Japanese woodblock prints. The color palette should be "
        "both authentic to Ukiyo-e tradition and emotionally resonant with the memory's mood."
    )

    technical = (
        " Compositional style: asymmetric balance with dramatic perspective, subtle gradients in the sky, "
        "and the poetic simplicity that makes Japanese prints timeless. High quality, museum-worthy artwork."
    )
    return base + narrative + technical


def build_prompt_variations(inputs: UserInputs, base: Optional[str] = None) -> list[str]:
    """One prompt per slot, sharing the base prompt and differing in composition."""
    base = base or build_prompt(inputs)
    return [f"{base} {COMPOSITIONS[i % len(COMPOSITIONS)]}" for i in range(SLOT_COUNT)]
