TRY_ON_PROMPT = """Edit Image 1. KEEP the person from Image 1 (face, hair, body shape, skin tone, pose) EXACTLY the same. Do NOT replace the person. Do NOT move the arms or change the pose. Wrap the clothing around their existing body structure. Swap ONLY the clothing to match Image 2. Waist up shot. Match Image 1 lighting. Background: Place them in a beautiful atrium with blurred flowers in the background."""

# Output pixel dimensions per aspect ratio; unknown values use the default
DEFAULT_SIZE = "1024x1536"  # Mobile portrait
SIZE_BY_ASPECT_RATIO = {
    "portrait": DEFAULT_SIZE,
    "square": "1024x1024",
    "landscape": "1536x1024",
}


def size_for_aspect_ratio(aspect_ratio: str | None) -> str:
    return SIZE_BY_ASPECT_RATIO.get((aspect_ratio or "").strip().lower(), DEFAULT_SIZE)
