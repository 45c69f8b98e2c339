import ast
import glob
import io
import logging
import os.path

import numpy as np
import matplotlib.colors as mcolors

from decode import clutter_opcodes

TABLE_EXT = '.tbl'

log = logging.getLogger(__name__)
log.addHandler(logging.StreamHandler())
log.setLevel(logging.WARNING)

# One color per opcode, in opcode order
CLUTTER_OPCODE_TABLE = '''\
# Clutter filter map opcodes
(0.0, 0.0, 0.0)
(0.2, 0.6, 1.0)
(1.0, 0.3, 0.1)
'''

def _parse_line(line):
	if hasattr(line, 'decode'):
		line = line.decode('ascii')

	line = line.strip()
	if not line or line.startswith('#') or line.startswith('!'):
		return None

	# GEMPAK tables list plain 0-255 integer triples
	if not line.startswith('('):
		r, g, b = map(int, line.split())
		return (r / 255., g / 255., b / 255.)

	return ast.literal_eval(line)

def read_colortable(fobj):
	colors = list()
	try:
		for line in fobj:
			literal = _parse_line(line)
			if literal is not None:
				colors.append(mcolors.to_rgb(literal))
	except (SyntaxError, ValueError):
		raise RuntimeError('Malformed colortable.')

	if not colors:
		raise RuntimeError('Empty colortable.')
	return colors

class ColortableRegistry(dict):
	def scan_dir(self, path):
		for fname in sorted(glob.glob(os.path.join(path, '*' + TABLE_EXT))):
			if not os.path.isfile(fname):
				continue
			name = os.path.splitext(os.path.basename(fname))[0]
			with open(fname, 'r') as fobj:
				try:
					self.add_colortable(fobj, name)
					log.debug('Added colortable %s from %s', name, fname)
				except RuntimeError:
					log.info('Skipping unparsable file: %s', fname)

	def add_colortable(self, fobj, name):
		self[name] = read_colortable(fobj)

	def get_with_steps(self, name, start, step):
		num_steps = len(self[name]) + 1
		boundaries = start + step * np.arange(num_steps)
		return self.get_with_boundaries(name, boundaries)

	def get_with_boundaries(self, name, boundaries):
		cmap = self.get_colortable(name)
		return mcolors.BoundaryNorm(boundaries, cmap.N), cmap

	def get_colortable(self, name):
		return mcolors.ListedColormap(self[name], name = name)

	def opcode_legend(self, name = 'ClutterOpcode'):
		# Label, color pairs for a legend keyed by clutter filter opcode
		return [(clutter_opcodes(code), color) for code, color in enumerate(self[name])]

registry = ColortableRegistry()
registry.add_colortable(io.StringIO(CLUTTER_OPCODE_TABLE), 'ClutterOpcode')

if 'COLORTABLE_DIR' in os.environ:
	registry.scan_dir(os.environ['COLORTABLE_DIR'])
