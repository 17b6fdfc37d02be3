from domain.models import SizingRequest, SizingResult


def estimate_size(request: SizingRequest) -> SizingResult:
    """
    Rough size from height (cm) and weight (kg).
    Small wins over large when both thresholds trip.
    """
    height, weight = request.height, request.weight

    if height < 160 or weight < 55:
        size = "S"
    elif height > 185 or weight > 90:
        size = "XL"
    elif height > 175 or weight > 80:
        size = "L"
    else:
        size = "M"

    return SizingResult(size=size, height=height, weight=weight)
