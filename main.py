import argparse
from collections import Counter
import sys

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Patch

from decode import (L2D, ClutterFilterMap, MessageType, NexradError, clutter_map_grid, clutter_opcodes, compression_types)
import colors

def summarize(f):
    counts = Counter()
    first_radial = None
    clutter_map = None

    for msg in f:
        counts[msg.header.message_type] += 1
        if msg.header.message_type == MessageType.DIGITAL_RADAR_DATA_GENERIC and first_radial is None:
            first_radial = msg.payload
        elif isinstance(msg.payload, ClutterFilterMap) and clutter_map is None:
            clutter_map = msg.payload

    lines = [
        'Volume Header: {0.name} {0.icao} {1}'.format(f.volume_header, f.dt),
        'Total segments: {:d}'.format(sum(1 for _ in f.segments())),
        'Total messages: {:d}'.format(sum(counts.values()))
    ]

    for msg_type in sorted(counts):
        lines.append('  {:>2d} {:<30s} {:d}'.format(msg_type, msg_type.name, counts[msg_type]))

    if first_radial is not None:
        lines.append('First radial: {0.radar_id} az {0.azimuth_angle:.2f} el {0.elevation_angle:.2f} ({1})'.format(first_radial, compression_types(first_radial.compression_indicator)))

    if clutter_map is not None:
        lines.append('Clutter filter map: {:d} elevation segments'.format(len(clutter_map.elevation_segments)))
        for num, seg in enumerate(clutter_map.elevation_segments):
            ops = Counter(zone.opcode for az in seg.azimuth_segments for zone in az.range_zones)
            ops = ', '.join('{} {:d}'.format(clutter_opcodes(op), ops[op]) for op in sorted(ops))
            lines.append('  {:d}: {:d} azimuth segments; {}'.format(num, len(seg.azimuth_segments), ops))

    return clutter_map, lines

def plot_clutter_map(clutter_map, elevation, ax):
    grid, rng = clutter_map_grid(clutter_map.elevation_segments[elevation])
    rng = rng.to('km').magnitude
    az = np.linspace(0, 360, grid.shape[0] + 1)

    xlocs = rng * np.sin(np.deg2rad(az[:, np.newaxis]))
    ylocs = rng * np.cos(np.deg2rad(az[:, np.newaxis]))

    norm, cmap = colors.registry.get_with_steps('ClutterOpcode', -0.5, 1)
    ax.pcolormesh(xlocs, ylocs, grid, norm = norm, cmap = cmap)
    ax.set_aspect('equal', 'datalim')
    ax.set_title('Clutter Filter Map, Elevation Segment {:d}'.format(elevation))
    ax.set_facecolor('black')
    ax.legend(handles = [Patch(color = color, label = label) for label, color in colors.registry.opcode_legend()], loc = 'upper right')

def main(argv = None):
    parser = argparse.ArgumentParser(description = 'Summarize a NEXRAD Level II archive')
    parser.add_argument('filename')
    parser.add_argument('--strict', action = 'store_true', help = 'fail on segment size mismatches')
    parser.add_argument('--plot', type = int, metavar = 'N', help = 'plot clutter map elevation segment N')
    parser.add_argument('--output', help = 'save the plot instead of showing it')
    args = parser.parse_args(argv)

    try:
        with L2D(args.filename, strict = args.strict) as f:
            clutter_map, lines = summarize(f)
    except NexradError as e:
        print('{}: {}'.format(args.filename, e), file = sys.stderr)
        return 1

    print('\n'.join(lines))

    if args.plot is not None:
        if clutter_map is None or not 0 <= args.plot < len(clutter_map.elevation_segments):
            print('No clutter map elevation segment {:d}'.format(args.plot), file = sys.stderr)
            return 1

        fig, ax = plt.subplots(1, 1, figsize = (8, 8))
        plot_clutter_map(clutter_map, args.plot, ax)
        if args.output:
            fig.savefig(args.output)
        else:
            plt.show()

    return 0

if __name__ == '__main__':
    sys.exit(main())
