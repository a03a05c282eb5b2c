"""Prompt templates for every remote stage. Placeholders are filled with str.format."""

CHARACTER_EXTRACTION_PROMPT = """
You are an expert in script analysis for comic books. Your task is to identify the main characters from the provided script and generate a detailed visual description for each. This description will be used to ensure character consistency in AI-generated images. Focus on creating a unique and consistent look for each character.

The script is provided below:
---
{script}
---

Output ONLY a valid JSON object. The object should have a single key "characters". The value of "characters" should be an array of objects, where each object represents a character and has two keys: "name" (the character's name) and "description" (a detailed visual description including appearance, clothing, and key features). If no characters are clearly identifiable, return an empty array. Ensure the JSON is well-formed.
"""

SCENE_EXTRACTION_PROMPT = """
You are an expert production designer for comic books. Your task is to identify all unique scenes from the provided script and generate a detailed visual description for each. This description will establish a consistent look and feel for each location. Focus on mood, lighting, key architectural features, and color palette.

The script is provided below:
---
{script}
---

Output ONLY a valid JSON object. The object should have a single key "scenes". The value of "scenes" should be an array of objects, where each object represents a unique scene and has two keys: "id" (the scene's heading from the script, e.g., "INT. OLD LIBRARY - NIGHT") and "description" (a detailed visual description for that location). If no scenes are clearly identifiable, return an empty array. Ensure the JSON is well-formed.
"""

PANEL_BREAKDOWN_PROMPT = """
You are an expert comic book artist's assistant. Your task is to analyze a comic book script and break it down into individual panels. For each panel, you must generate a detailed visual description, list the characters present, identify the scene, and determine the camera shot type.

The script is provided below:
---
{script}
---

Output ONLY a valid JSON array of objects. Each object must represent a single panel and have four keys: "sceneId", "description", "characters", and "shotType".
- "sceneId": A string containing the exact scene heading (e.g., "INT. COFFEE SHOP - DAY").
- "description": A string detailing the setting, action, and mood for that specific panel. **Do not include character or scene descriptions here**, only describe what is happening in the panel.
- "characters": An array of strings, where each string is the exact name of a character present in the panel.
- "shotType": A string describing the camera perspective. Analyze the script for clues like "CLOSE UP," "WIDE SHOT," or "POV." If no shot type is specified, infer the most logical one. Common types are: 'establishing shot', 'wide shot', 'medium shot', 'close-up', 'extreme close-up', 'over-the-shoulder shot'.

Example:
[
  {{
    "sceneId": "EXT. DARK ALLEY - NIGHT",
    "description": "Rain pours down, reflecting a single flickering streetlamp. An establishing shot to set the mood.",
    "characters": [],
    "shotType": "establishing shot"
  }},
  {{
    "sceneId": "EXT. DARK ALLEY - NIGHT",
    "description": "Detective Miller looks down at a mysterious glowing object on the ground.",
    "characters": ["Detective Miller"],
    "shotType": "medium shot"
  }}
]

Ensure the JSON is well-formed.
"""

ENHANCE_CHARACTER_PROMPT = """
You are a world-class character designer for comics and animation. Your task is to take a basic character description and expand it into a highly detailed and specific "character model sheet" description. This detailed description is CRUCIAL for an AI image generator to maintain character consistency across multiple panels.

**Instructions:**
1.  Analyze the provided character name and description.
2.  Flesh out every visual detail. Be specific about facial structure, eye color and shape, hair style and color (including texture and length), body type, and posture.
3.  Describe their typical clothing in extreme detail: garment type, fabric, specific color names, and any logos, patterns, or accessories.
4.  Mention any distinguishing features like scars, tattoos, or birthmarks.
5.  The final output should be a single, coherent paragraph of text.

**Character Name:** {name}
**Basic Description:** {description}

**Output the detailed model sheet description below:**
"""

ENHANCE_SCENE_PROMPT = """
You are an expert production designer and matte painter for feature films. Your task is to take a basic scene description and expand it into a detailed and evocative "location bible" entry. This detailed description is CRITICAL for an AI image generator to maintain environmental consistency across multiple panels set in this location.

**Instructions:**
1.  Analyze the provided scene ID and description.
2.  Establish a clear mood and atmosphere.
3.  Define the lighting conditions with specifics.
4.  Specify a distinct color palette.
5.  Describe key architectural elements, furniture, and props in detail, including materials and textures.
6.  The final output should be a single, coherent paragraph of text.

**Scene ID:** {scene_id}
**Basic Description:** {description}

**Output the detailed location bible description below:**
"""

PANEL_IMAGE_PROMPT = (
    'A comic book panel in the art style of "{style}". {shot} '
    'The main action of the panel is: "{description}". '
    'Scene Environment: "{scene}". This description must be followed exactly for visual consistency. '
    '{characters} Compose the image in a {aspect_ratio} aspect ratio. Do not include text or speech bubbles.'
)

COVER_IMAGE_PROMPT = (
    'Generate a captivating, text-free comic book cover for a story with the following summary: "{summary}". '
    'The art style should be: {style}. The cover must be dynamic, visually striking, and suitable for a title page. '
    'Compose the image in a 3:4 portrait aspect ratio. DO NOT include any words, titles, or text on the image.'
)

PAGE_LAYOUT_PROMPT = """
You are a master comic book layout artist. Your task is to group a series of comic book panels into pages and suggest a layout for each page.
A typical comic book page has between 2 and 6 panels. Analyze the panel descriptions to create a logical and dynamic reading flow.

The list of panel descriptions is provided below (as a JSON array of strings):
---
{panel_descriptions}
---

Output ONLY a valid JSON array of page objects. Each page object must have two keys: "panel_indices" and "layout".
- "panel_indices": An array of numbers, where each number is the zero-based index of the panel from the original list.
- "layout": A string representing the panel arrangement on the page. You MUST choose one of the following predefined layout strings: {layouts}.

Example of a valid output for 5 panels:
[
  {{"panel_indices": [0, 1], "layout": "1x2"}},
  {{"panel_indices": [2, 3, 4], "layout": "2_over_1"}}
]

Ensure the JSON is well-formed and that every panel index from the input is used exactly once across all pages.
"""

CHAT_SYSTEM_INSTRUCTION = "You are a friendly and helpful assistant specializing in comic books and storytelling."
