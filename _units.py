import numpy as np
import pint

units = pint.UnitRegistry(autoconvert_offset_to_baseunit = True)

def gate_ranges(first_gate, gate_width, num_gates, range_units = 'km'):
    return units.Quantity(first_gate + np.arange(num_gates, dtype = 'float32') * gate_width, range_units)

def range_edges(max_range, step = 1, range_units = 'km'):
    return units.Quantity(np.arange(0, max_range + step, step, dtype = 'float32'), range_units)

del pint
