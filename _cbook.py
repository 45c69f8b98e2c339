import os
import os.path

def is_string_like(obj):
    return isinstance(obj, (str, bytes))

def is_path_like(obj):
    return is_string_like(obj) or isinstance(obj, os.PathLike)

def get_test_data(fname, as_file_obj = True):
    data_dir = os.environ.get('TEST_DATA_DIR', os.path.join(os.path.dirname(__file__), 'testdata'))

    path = os.path.join(data_dir, fname)

    if as_file_obj:
        return open(path, 'rb')

    return path

class Exporter(object):
    def __init__(self, globls):
        self.globls = globls
        self.exports = globls.setdefault('__all__', [])

    def export(self, defn):
        self.exports.append(defn.__name__)
        return defn

    def __enter__(self):
        self.start_vars = set(self.globls)

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.exports.extend(sorted(set(self.globls) - self.start_vars))
        del self.start_vars

__all__ = ('Exporter', 'get_test_data', 'is_path_like', 'is_string_like')
