"""
Prompt construction: built-in default, named presets, custom prompts and metadata enrichment.

Every function here is deterministic; the same settings and metadata always produce the same
text, which keeps prompts reproducible in tests and comparable in logs.
"""

from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict

from ai_tagger.config import Settings
from ai_tagger.errors import PromptFileError
from ai_tagger.metadata import PhotoMetadata

ENGLISH = "english"
HIERARCHY_SEPARATOR = " > "

FLAT_KEYWORD_ITEM = "4. A list of relevant keywords (comma-separated string)"
FLAT_KEYWORD_EXAMPLE = '"keyword1, keyword2, keyword3"'
HIERARCHICAL_KEYWORD_ITEM = (
    "4. A list of relevant hierarchical keywords organized from broad to specific categories "
    "using ' > ' separator (e.g., Nature > Wildlife > Birds, Sports > Team Sports > Football)"
)
HIERARCHICAL_KEYWORD_EXAMPLE = (
    '"Nature > Wildlife > Birds, Sports > Team Sports > Football, '
    'Photography > Wildlife Photography > Telephoto"'
)
KEYWORD_FORMAT_NOTE = (
    "IMPORTANT: The keywords field must be a comma-separated string, not an array."
)
HIERARCHICAL_INSTRUCTION = (
    "HIERARCHICAL KEYWORDS: For keywords, use hierarchical format with \" > \" separator to "
    "organize from broad to specific categories:\n"
    "- Start with broad categories (e.g., Nature, Sports, Architecture, Photography)\n"
    "- Progress to specific subcategories (e.g., Wildlife, Team Sports, Modern Architecture)\n"
    "- End with detailed descriptors (e.g., Birds, Football, Glass Building)\n"
    "- Examples: \"Nature > Wildlife > Birds > Eagles\", \"Sports > Team Sports > Football\"\n"
    "- Include 8-12 hierarchical keywords total\n"
    "- Separate different keyword hierarchies with commas"
)
ENRICHMENT_HEADER = "Additional context from photo metadata:"
ENRICHMENT_FOOTER = (
    "Please consider this technical and location information in your analysis and include "
    "relevant location details in your response."
)


def language_instruction(language: str) -> str:
    """
    Return the instruction forcing a non-English response language ('' for English).

    Examples:
        >>> language_instruction("English")
        ''
        >>> language_instruction("German").startswith("IMPORTANT: Please respond in German")
        True

    """
    language = language.strip()
    if not language or language.casefold() == ENGLISH:
        return ""
    return (
        f"IMPORTANT: Please respond in {language} language. All text fields (title, caption, "
        f"headline, keywords, instructions, copyright, location) should be in {language}.\n\n"
    )


def default_prompt(*, hierarchical_keywords: bool = False, language: str = "English") -> str:
    """Built-in prompt asking for the full JSON answer schema."""
    keyword_item = HIERARCHICAL_KEYWORD_ITEM if hierarchical_keywords else FLAT_KEYWORD_ITEM
    keyword_example = (
        HIERARCHICAL_KEYWORD_EXAMPLE if hierarchical_keywords else FLAT_KEYWORD_EXAMPLE
    )
    prompt = (
        "Please analyze this photograph and provide:\n"
        "1. A short title (2-5 words)\n"
        "2. A brief caption (1-2 sentences)\n"
        "3. A detailed headline/description (2-3 sentences)\n"
        f"{keyword_item}\n"
        "5. Special instructions for photo editing or usage (if applicable)\n"
        "6. Copyright or attribution information (if visible)\n"
        "7. Location information (if identifiable landmarks are present)\n"
        "\n"
        "Please format your response as JSON with the following structure:\n"
        "{\n"
        '  "title": "short descriptive title",\n'
        '  "caption": "brief caption here",\n'
        '  "headline": "detailed headline/description here",\n'
        f'  "keywords": {keyword_example},\n'
        '  "instructions": "editing suggestions or usage notes",\n'
        '  "copyright": "copyright or attribution info if visible",\n'
        '  "location": "location name if identifiable landmarks present"\n'
        "}\n"
        "\n"
        f"{KEYWORD_FORMAT_NOTE}"
    )
    if hierarchical_keywords:
        prompt += "\n\n" + HIERARCHICAL_INSTRUCTION
    return language_instruction(language) + prompt


class PromptPreset(BaseModel):
    """A named, reusable prompt template."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    prompt: str


def _preset(  # noqa: PLR0913
    name: str,
    description: str,
    subject: str,
    focus: tuple[str, ...],
    keyword_example: str,
    location_hint: str,
    note: str = "",
) -> PromptPreset:
    focus_lines = "\n".join(f"- {item}" for item in focus)
    note_block = f"\n\nNote: {note}" if note else ""
    prompt = (
        f"Please analyze this {subject} photograph and provide:\n"
        "1. A short title (2-5 words)\n"
        "2. A brief caption (1-2 sentences)\n"
        "3. A detailed headline/description (2-3 sentences)\n"
        "4. A list of relevant keywords (comma-separated string)\n"
        "5. Special instructions for photo editing or usage\n"
        "6. Copyright or attribution information (if visible)\n"
        "7. Location information (if identifiable)\n"
        "\n"
        f"Focus on:\n{focus_lines}{note_block}\n"
        "\n"
        "Please format your response as JSON with the following structure:\n"
        "{\n"
        '  "title": "short descriptive title",\n'
        '  "caption": "brief caption here",\n'
        '  "headline": "detailed headline/description here",\n'
        f'  "keywords": "{keyword_example}",\n'
        '  "instructions": "editing suggestions or usage notes",\n'
        '  "copyright": "copyright or attribution info if visible",\n'
        f'  "location": "{location_hint}"\n'
        "}"
    )
    return PromptPreset(name=name, description=description, prompt=prompt)


PRESETS: tuple[PromptPreset, ...] = (
    _preset(
        "Sports Photography",
        "Action, athletes, equipment and venues",
        "sports",
        (
            "Sport identification (football, basketball, tennis, etc.)",
            "Action and movement (running, jumping, throwing, scoring)",
            "Player details (jersey numbers if visible, team colors, positions)",
            "Equipment, venue characteristics and crowd atmosphere",
            "Lighting conditions and photography technique",
        ),
        "sport, action, team colors, equipment, venue, crowd",
        "venue name if identifiable",
    ),
    _preset(
        "Nature & Wildlife",
        "Species identification, behavior and habitats",
        "nature/wildlife",
        (
            "Accurate species identification when possible",
            "Behavioral descriptions (feeding, mating, hunting, etc.)",
            "Environmental context (season, weather, habitat type)",
            "Conservation status if known",
            "Technical photography aspects (lighting, composition)",
        ),
        "species, behavior, habitat, season, wildlife photography",
        "location name if identifiable",
    ),
    _preset(
        "Architecture",
        "Styles, materials and structural details of buildings",
        "architectural",
        (
            "Architectural style and period (Gothic, Modern, Art Deco, etc.)",
            "Building materials (steel, glass, concrete, brick, stone)",
            "Design elements (columns, arches, facades, rooflines)",
            "Historical or cultural significance",
            "Lighting and perspective techniques used",
        ),
        "architectural style, materials, facade, perspective, landmark",
        "building name or location if identifiable",
    ),
    _preset(
        "Portrait & People",
        "Mood, lighting and composition of people pictures",
        "portrait/people",
        (
            "Emotional expression and mood",
            "Lighting technique (natural, studio, dramatic, soft)",
            "Composition style (close-up, environmental, group)",
            "Setting and context (indoor, outdoor, professional, casual)",
        ),
        "portrait style, lighting, mood, composition, setting",
        "general location type if identifiable",
        note="Do not attempt to identify specific individuals by name.",
    ),
    _preset(
        "Events & Weddings",
        "Ceremonies, celebrations and key moments",
        "event/wedding",
        (
            "Type of event (wedding, celebration, ceremony, reception)",
            "Key moments (ceremony, first dance, cake cutting, speeches)",
            "Emotional content (joy, celebration, intimacy, tradition)",
            "Setting, decor and group dynamics",
        ),
        "event type, moment, emotion, setting, celebration",
        "venue name or type if identifiable",
    ),
    _preset(
        "Travel & Landscape",
        "Geography, weather, light and cultural landmarks",
        "travel/landscape",
        (
            "Geographical features (mountains, ocean, desert, forest, urban)",
            "Weather, atmospheric conditions and time of day",
            "Cultural landmarks or human elements",
            "Seasonal characteristics",
            "Photography techniques (long exposure, panoramic, HDR)",
        ),
        "landscape type, geography, weather, time of day, landmark",
        "location name if identifiable landmarks present",
    ),
    _preset(
        "Product Photography",
        "Product category, features and commercial use",
        "product",
        (
            "Product category and type",
            "Key features, style and design elements",
            "Lighting setup and background",
            "Usage context and target audience",
        ),
        "product category, material, design, studio lighting, commercial",
        "setting type if identifiable",
    ),
    _preset(
        "Street Photography",
        "Candid urban life, moments and atmosphere",
        "street",
        (
            "Candid moments and human interaction",
            "Urban environment and street elements",
            "Light, shadow and geometry",
            "Mood and storytelling",
        ),
        "street life, urban, candid, light and shadow, city",
        "city or neighborhood if identifiable",
        note="Do not attempt to identify specific individuals by name.",
    ),
    _preset(
        "Food Photography",
        "Dishes, ingredients, styling and presentation",
        "food",
        (
            "Dish identification and cuisine",
            "Visible ingredients and preparation",
            "Plating, styling and props",
            "Lighting and color palette",
        ),
        "cuisine, dish, ingredients, plating, food styling",
        "restaurant or setting if identifiable",
    ),
    _preset(
        "Real Estate Photography",
        "Rooms, interior features and property exteriors",
        "real estate",
        (
            "Room type and layout",
            "Interior features, finishes and fixtures",
            "Natural light and sense of space",
            "Exterior and curb appeal when visible",
        ),
        "room type, interior design, natural light, property, home",
        "property type or area if identifiable",
    ),
    _preset(
        "Astrophotography",
        "Night sky, celestial objects and long exposures",
        "astrophotography",
        (
            "Celestial objects (Milky Way, moon, planets, nebulae, star trails)",
            "Sky conditions and light pollution",
            "Foreground elements",
            "Exposure technique (tracking, stacking, long exposure)",
        ),
        "night sky, milky way, stars, long exposure, astronomy",
        "dark sky site or region if identifiable",
    ),
    _preset(
        "Stock Photography",
        "Commercial appeal and broadly searchable concepts",
        "stock",
        (
            "Broad concepts and themes buyers search for",
            "Commercial and editorial usability",
            "Copy space and composition",
            "Mood, color and demographics without identifying individuals",
        ),
        "concept, theme, business, lifestyle, copy space",
        "general location if identifiable",
    ),
)


def list_presets() -> list[PromptPreset]:
    return list(PRESETS)


def preset_names() -> list[str]:
    return [preset.name for preset in PRESETS]


def get_preset(name: str) -> PromptPreset | None:
    """Find a preset by its exact name."""
    return next((preset for preset in PRESETS if preset.name == name), None)


def load_prompt_from_file(path: Path) -> str:
    """
    Read a custom prompt from a text file.

    Raises:
        PromptFileError: If the file cannot be read or only contains whitespace.

    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"Could not read prompt file {path}: {exc}"
        raise PromptFileError(msg) from exc
    content = content.strip()
    if not content:
        msg = f"Prompt file {path} is empty"
        raise PromptFileError(msg)
    return content


def base_prompt(settings: Settings) -> str:
    """Pick the effective base prompt: custom, then preset, then built-in default."""
    language = language_instruction(settings.response_language)
    if settings.use_custom_prompt and settings.custom_prompt.strip():
        return language + settings.custom_prompt.strip()

    if settings.preset_name:
        preset = get_preset(settings.preset_name)
        if preset is not None:
            prompt = language + preset.prompt
            if settings.use_hierarchical_keywords:
                prompt += "\n\n" + HIERARCHICAL_INSTRUCTION
            return prompt
        logger.warning("unknown_prompt_preset", preset=settings.preset_name)

    return default_prompt(
        hierarchical_keywords=settings.use_hierarchical_keywords,
        language=settings.response_language,
    )


def enrichment_lines(metadata: PhotoMetadata) -> list[str]:
    """
    Render metadata in the fixed order: location, camera, settings, capture date, image size.

    Examples:
        >>> from ai_tagger.metadata import CameraInfo, ShootingSettings
        >>> enrichment_lines(
        ...     PhotoMetadata(
        ...         camera=CameraInfo(make="Canon", model="EOS R5", lens="RF 50mm"),
        ...         settings=ShootingSettings(aperture="f/2.8", iso="200"),
        ...     )
        ... )
        ['Camera: Canon EOS R5 with RF 50mm', 'Camera settings: f/2.8, ISO 200']

    """
    lines: list[str] = []

    if metadata.gps:
        lines.append(f"GPS Location: {metadata.gps}")
    if metadata.location and (parts := metadata.location.parts()):
        lines.append("Location metadata: " + ", ".join(parts))

    if metadata.camera:
        camera = metadata.camera
        body = " ".join(part for part in (camera.make, camera.model) if part)
        line = f"Camera: {body}" if body else "Camera:"
        if camera.lens:
            line += f" with {camera.lens}" if body else f" {camera.lens}"
        lines.append(line)

    if metadata.settings:
        s = metadata.settings
        values = [
            value
            for value in (
                s.focal_length,
                s.aperture,
                s.shutter_speed,
                f"ISO {s.iso}" if s.iso else None,
                f"Flash: {s.flash}" if s.flash else None,
            )
            if value
        ]
        if values:
            lines.append("Camera settings: " + ", ".join(values))

    if metadata.datetime:
        lines.append(f"Captured: {metadata.datetime}")

    if metadata.image:
        size = metadata.image.dimensions or metadata.image.cropped_dimensions
        line = f"Image size: {size}"
        if metadata.image.dimensions and metadata.image.cropped_dimensions:
            line += f" (cropped to {metadata.image.cropped_dimensions})"
        lines.append(line)

    return lines


def build_prompt(settings: Settings, metadata: PhotoMetadata | None = None) -> str:
    """
    Assemble the full instruction text for one analysis.

    Args:
        settings: Current settings (prompt selection, language, keyword style, enrichment)
        metadata: Photo context; ignored unless ``settings.include_metadata`` is set

    Returns:
        The base prompt, followed by the enrichment block when there is anything to add.

    """
    prompt = base_prompt(settings)
    if not settings.include_metadata or metadata is None:
        return prompt

    lines = enrichment_lines(metadata)
    if not lines:
        return prompt

    logger.debug("prompt_enriched_with_metadata", line_count=len(lines))
    return (
        f"{prompt}\n\n{ENRICHMENT_HEADER}\n" + "\n".join(lines) + f"\n\n{ENRICHMENT_FOOTER}"
    )
