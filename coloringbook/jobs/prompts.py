"""Prompt templates for coloring-page remixes and the curated scene themes."""

from dataclasses import asdict, dataclass
from typing import Dict, List, Sequence


@dataclass(frozen=True)
class VariantTheme:
    id: str
    title: str
    description: str
    prompt: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


VARIANT_THEMES: List[VariantTheme] = [
    VariantTheme(
        id="camping",
        title="Camping Adventure",
        description="Under the stars with tents, campfire, and pine trees",
        prompt="camping in a cozy forest with tents, a campfire, pine trees, and stars in the night sky",
    ),
    VariantTheme(
        id="amusement-park",
        title="Amusement Park",
        description="Roller coasters, ferris wheels, and cotton candy",
        prompt="visiting a magical amusement park with roller coasters, a ferris wheel, balloons, and colorful rides",
    ),
    VariantTheme(
        id="beach",
        title="Beach Day",
        description="Sunny shores with sand castles and palm trees",
        prompt="enjoying a sunny beach with palm trees, sand castles, beach balls, and gentle waves",
    ),
    VariantTheme(
        id="space",
        title="Space Explorer",
        description="Floating among stars, planets, and rockets",
        prompt="exploring outer space with rockets, planets, stars, and floating among the cosmos",
    ),
    VariantTheme(
        id="underwater",
        title="Underwater World",
        description="Swimming with fish, coral, and sea creatures",
        prompt="diving in an underwater world with colorful fish, coral reefs, sea turtles, and bubbles",
    ),
    VariantTheme(
        id="winter",
        title="Winter Wonderland",
        description="Snowflakes, snowmen, and cozy scarves",
        prompt="playing in a winter wonderland with snowflakes, snowmen, sleds, and cozy winter clothing",
    ),
    VariantTheme(
        id="safari",
        title="Safari Adventure",
        description="Jungle animals, vines, and tropical plants",
        prompt="on a safari adventure with elephants, giraffes, lions, tropical trees, and safari vehicles",
    ),
]

_THEMES_BY_ID = {theme.id: theme for theme in VARIANT_THEMES}


def build_combined_prompt(scene: str) -> str:
    """Wrap a scene description in the remix instructions sent to the generator."""
    return (
        "Transform this reference photo into a fresh black and white coloring book page. "
        "Keep the same people, pets, and unique accessories recognizable while placing "
        f"them in the following new scene: {scene}. Maintain playful, family-friendly "
        "line art with bold outlines, no shading or color fills, and a clean white "
        "background. Ensure proportions remain consistent with the original photo."
    )


def prompts_from_themes(theme_ids: Sequence[str]) -> List[str]:
    """Scene prompts for the given theme ids, in request order. Unknown ids are skipped."""
    return [_THEMES_BY_ID[theme_id].prompt for theme_id in theme_ids if theme_id in _THEMES_BY_ID]
