import os
import sys

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def write_year(directory, year, rows):
    path = os.path.join(str(directory), f'accident_{year}.csv.bz2')
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


@pytest.fixture
def data_dir(tmp_path):
    """Two small FARS years: 2013 (states 1 and 6) and 2014 (state 1 only)."""
    write_year(tmp_path, 2013, {
        'STATE':    [1, 1, 1, 6, 6, 1],
        'MONTH':    [1, 1, 2, 2, 12, 3],
        'LATITUDE': [32.5, 33.1, 99.9999, 36.2, 34.0, 31.9],
        'LONGITUD': [-86.6, -87.0, -86.1, -119.7, 999.9999, 999.9999],
        'FATALS':   [1, 2, 1, 1, 3, 1],
    })
    write_year(tmp_path, 2014, {
        'STATE':    [1, 1, 1],
        'MONTH':    [1, 3, 3],
        'LATITUDE': [32.0, 32.2, 32.4],
        'LONGITUD': [-86.0, -86.2, -86.4],
        'FATALS':   [1, 1, 1],
    })
    return tmp_path


@pytest.fixture
def states():
    return gpd.GeoDataFrame(
        {'NAME': ['Alabama', 'California']},
        geometry=[box(-88.5, 30.2, -84.9, 35.0), box(-124.4, 32.5, -114.1, 42.0)],
        crs='EPSG:4326',
    )
