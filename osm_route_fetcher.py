import argparse
import json
import logging
import math
import os
import sys
import time

import requests

from config import (
    CACHE_FILE, LOG_FILE, MAX_RETRIES, OUTPUT_FILE, OVERPASS_MIRRORS,
    OVERPASS_TIMEOUT, RETRY_DELAY,
)
from osm_route_relation import relations_from_overpass
from route_topology import TopologyError

logger = logging.getLogger(__name__)


class RouteRelationDownloader:
    """Downloads an OSM route relation with all of its members."""

    def __init__(self, relation_id, mirrors=None):
        self.relation_id = int(relation_id)
        self.mirrors = list(mirrors or OVERPASS_MIRRORS)
        self.osm_data = None
        self.data_file = CACHE_FILE.format(relation_id=self.relation_id)
        self.max_retries = MAX_RETRIES
        self.retry_delay = RETRY_DELAY

    def build_overpass_query(self):
        """Build Overpass query for the relation, nested relations, ways and nodes."""
        query = f"""
        [out:json][timeout:{OVERPASS_TIMEOUT}];
        relation({self.relation_id});
        (._;>>;);
        out body;
        """
        return query

    def download(self):
        """Download relation data with retry logic, falling back through mirrors."""
        query = self.build_overpass_query()

        logger.info(f"Starting download of relation {self.relation_id}")

        for mirror in self.mirrors:
            for attempt in range(self.max_retries):
                try:
                    logger.info(f"Attempt {attempt + 1}/{self.max_retries} via {mirror}")
                    response = requests.post(
                        mirror,
                        data={'data': query},
                        timeout=OVERPASS_TIMEOUT + 30
                    )

                    if response.status_code == 200:
                        logger.info("Relation data downloaded successfully")
                        self.osm_data = response.json()
                        self._save_osm_data()
                        return True
                    elif response.status_code == 429:
                        logger.warning("Rate limited by Overpass API, retrying...")
                        time.sleep(self.retry_delay * (attempt + 1))
                    elif response.status_code >= 500:
                        logger.warning(f"{mirror} returned {response.status_code}, trying next mirror")
                        break
                    else:
                        logger.error(f"Error downloading data: {response.status_code}")
                        return False

                except requests.exceptions.Timeout:
                    logger.warning(f"Request timeout on attempt {attempt + 1}, retrying...")
                    time.sleep(self.retry_delay)
                except requests.exceptions.RequestException as e:
                    logger.error(f"Network error: {e}")
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_delay)

        logger.error("Failed to download relation data after all retries")
        return False

    def _save_osm_data(self):
        """Save Overpass JSON to the cache file."""
        try:
            with open(self.data_file, 'w') as f:
                json.dump(self.osm_data, f)
            logger.info(f"Relation data saved to {self.data_file}")
        except IOError as e:
            logger.error(f"Error saving relation data: {e}")
            raise

    def load_cached(self, file_path=None):
        """Load previously downloaded Overpass JSON."""
        if file_path is None:
            file_path = self.data_file

        if not os.path.exists(file_path):
            logger.error(f"File not found: {file_path}")
            return False

        try:
            with open(file_path) as f:
                self.osm_data = json.load(f)
            logger.info(f"Loaded relation data from {file_path}")
            return True
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing JSON: {e}")
            return False

    def build_relation(self):
        """Return the downloaded OSMRouteRelation, or None if it isn't in the data."""
        if self.osm_data is None:
            logger.error("No relation data. Please download or load it first.")
            return None

        for relation in relations_from_overpass(self.osm_data):
            if relation.osm_id == self.relation_id:
                return relation

        logger.error(f"Relation {self.relation_id} not found in data")
        return None


def _json_safe(statistics):
    # NaN is not valid JSON
    return {
        k: (None if isinstance(v, float) and math.isnan(v) else v)
        for k, v in statistics.items()
    }


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Download an OSM route relation, order its ways and report statistics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python osm_route_fetcher.py --relation 2211224 --stats
  python osm_route_fetcher.py --relation 2211224 --offline --output route.geojson
  python osm_route_fetcher.py --relation 2211224 --ordered --output ways.geojson
        """
    )

    parser.add_argument('--relation', type=int, required=True, help='OSM relation ID')
    parser.add_argument('--offline', action='store_true', help='Use the cached JSON instead of Overpass')
    parser.add_argument('--cache', type=str, help='Cache file (default: route_relation_<id>.json)')
    parser.add_argument('--output', type=str, nargs='?', const='',
                        help='Write GeoJSON to this file (default: route_<id>.geojson)')
    parser.add_argument('--ordered', action='store_true', help='Write ordered ways instead of a single line')
    parser.add_argument('--stats', action='store_true', help='Display route statistics')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE),
            logging.StreamHandler()
        ]
    )

    downloader = RouteRelationDownloader(args.relation)
    if args.cache:
        downloader.data_file = args.cache

    if args.offline:
        if not downloader.load_cached():
            return False
    elif not downloader.download():
        return False

    relation = downloader.build_relation()
    if relation is None:
        return False

    logger.info(f"{relation.id} ({relation.name}): {relation.shape}")

    try:
        if args.output is not None:
            if args.ordered:
                data = relation.ordered_feature_collection
            else:
                data = relation.simplest_feature
            output_file = args.output or OUTPUT_FILE.format(relation_id=args.relation)
            with open(output_file, 'w') as f:
                json.dump(data, f, indent=2)
            logger.info(f"GeoJSON saved to {output_file}")

        if args.stats:
            stats = _json_safe(relation.statistics)
            logger.info(f"Route Statistics: {json.dumps(stats, indent=2)}")
    except TopologyError as e:
        logger.error(str(e))
        return False

    logger.info("Pipeline completed successfully")
    return True


def cli():
    success = main()
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    cli()
