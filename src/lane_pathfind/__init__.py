"""lane_pathfind — locate pipeline output files for sequencing lanes.

Resolves an identifier (lane, library, sample, species or study) against the
read-only tracking database, works out which output files each lane's
pipelines produced on disk, and reports pipeline completion status.

Typical usage::

    from lane_pathfind.config import FinderConfig
    from lane_pathfind.finder import LaneFilters, find_lanes
    from lane_pathfind.store import TrackingStore

    cfg   = FinderConfig.from_yaml("/etc/pathfind/config.yaml")
    store = TrackingStore.from_config(cfg)
    lanes = find_lanes(store, ["12345_1"], "lane", "map", "bam",
                       LaneFilters(mappers=["bwa"]), cfg)
    for lane in lanes:
        for f in lane.files:
            print(f.path)
"""

__version__ = "0.1.0"
