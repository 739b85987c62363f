"""
route_statistics.py — Length, elevation and tag coverage statistics for a route.

Works on plain GeoJSON LineString features (the output of OSMWay /
OSMRouteRelation), so it has no knowledge of the route graph itself.
"""

import math

from config import EARTH_RADIUS_KM, SAC_SCALE_HIGHWAYS


def haversine_km(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Return the great-circle distance in km between two points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def line_length_m(coordinates) -> float:
    """Length of a [lon, lat(, ele)] coordinate sequence in metres."""
    return sum(
        haversine_km(coordinates[i][0], coordinates[i][1],
                     coordinates[i + 1][0], coordinates[i + 1][1])
        for i in range(len(coordinates) - 1)
    ) * 1000


def round2(number: float) -> float:
    """Round to 2 decimals, halves rounded up (JavaScript Math.round)."""
    if math.isnan(number):
        return number
    return math.floor(number * 100 + 0.5) / 100


def elevation_change(coordinates) -> tuple[float, float]:
    """Sum of positive and negative elevation deltas along a 3D line."""
    ascent = 0.0
    descent = 0.0

    for last_coord, coord in zip(coordinates, coordinates[1:]):
        if coord[2] > last_coord[2]:
            ascent += coord[2] - last_coord[2]
        elif coord[2] < last_coord[2]:
            descent += last_coord[2] - coord[2]

    return ascent, descent


def aggregate_statistics(features, line_coordinates=None) -> dict:
    """Aggregate per-segment statistics over LineString features.

    ``surfacePct`` grows by ``1 / numSegments`` (the count so far) for every
    segment carrying a surface tag.  ``sacScalePct`` only counts
    path/track/footway segments and is NaN when there are none.

    ``line_coordinates`` is the assembled route LineString; it is only given
    for routable routes and only used for ascent/descent when every
    coordinate is 3D.
    """
    statistics = {
        "numSegments": 0,
        "numNodes": 0,
        "length": 0.0,
        "surfacePct": 0.0,
        "surfaceWays": [],
        "sacScalePct": 0.0,
        "sacScaleWays": [],
    }

    num_sac_scale_relevant = 0
    num_sac_scale = 0

    for segment in features:
        properties = segment.get("properties") or {}
        coordinates = segment["geometry"]["coordinates"]

        statistics["numSegments"] += 1
        statistics["numNodes"] += len(coordinates)

        if "surface" in properties:
            statistics["surfacePct"] += 1 / statistics["numSegments"]
        else:
            statistics["surfaceWays"].append(properties.get("@id"))

        if properties.get("highway") in SAC_SCALE_HIGHWAYS:
            num_sac_scale_relevant += 1
            if "sac_scale" in properties:
                num_sac_scale += 1
            else:
                statistics["sacScaleWays"].append(properties.get("@id"))

        statistics["length"] += line_length_m(coordinates)

    if num_sac_scale_relevant:
        statistics["sacScalePct"] = num_sac_scale / num_sac_scale_relevant
    else:
        statistics["sacScalePct"] = math.nan

    # ways with and without elevation can share a route: skip elevation then
    if line_coordinates and all(len(c) == 3 for c in line_coordinates):
        statistics["ascent"], statistics["descent"] = elevation_change(line_coordinates)

    statistics["surfacePct"] = round2(statistics["surfacePct"]) * 100
    statistics["sacScalePct"] = round2(statistics["sacScalePct"]) * 100
    statistics["length"] = round2(statistics["length"])
    if "ascent" in statistics:
        statistics["ascent"] = round2(statistics["ascent"])
        statistics["descent"] = round2(statistics["descent"])

    return statistics
