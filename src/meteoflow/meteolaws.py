"""Physical helper laws used by filters and generators."""

import math

from .utils_time import JULIAN_UNIX_EPOCH

T_WATER_FREEZING_PT = 273.15
STD_PRESS_SEA_LEVEL = 101325.
SOLAR_CONSTANT = 1361.

# Radiation below this threshold (W/m2) is considered night
DAY_ISWR_THRESH = 5.
SNOW_THRESH = 0.1
SNOW_ALBEDO = 0.85
SOIL_ALBEDO = 0.23


def std_pressure(altitude: float) -> float:
    """Standard atmosphere pressure (Pa) at an altitude (m)."""
    return STD_PRESS_SEA_LEVEL * (1. - 2.25577e-5 * altitude) ** 5.25588


def solar_elevation(lat: float, lon: float, julian_gmt: float) -> float:
    """
    Solar elevation angle above the horizon, in degrees.

    Uses the NOAA approximations for the equation of time and the declination.

    Args:
        lat: Latitude in degrees
        lon: Longitude in degrees, positive east
        julian_gmt: Julian day in GMT

    Returns:
        float: Elevation in degrees (negative when the sun is below the horizon)
    """
    days = julian_gmt - 2451545.0
    centuries = days / 36525.
    mean_long = (280.46646 + centuries * (36000.76983 + centuries * 0.0003032)) % 360.
    mean_anom = 357.52911 + centuries * (35999.05029 - 0.0001537 * centuries)
    eccent = 0.016708634 - centuries * (0.000042037 + 0.0000001267 * centuries)
    m_rad = math.radians(mean_anom)
    center = (math.sin(m_rad) * (1.914602 - centuries * (0.004817 + 0.000014 * centuries))
              + math.sin(2 * m_rad) * (0.019993 - 0.000101 * centuries)
              + math.sin(3 * m_rad) * 0.000289)
    true_long = mean_long + center
    omega = 125.04 - 1934.136 * centuries
    app_long = true_long - 0.00569 - 0.00478 * math.sin(math.radians(omega))
    obliq = 23. + (26. + (21.448 - centuries * (46.815 + centuries * (0.00059 - centuries * 0.001813))) / 60.) / 60.
    obliq_corr = obliq + 0.00256 * math.cos(math.radians(omega))
    declination = math.asin(math.sin(math.radians(obliq_corr)) * math.sin(math.radians(app_long)))

    y = math.tan(math.radians(obliq_corr / 2.)) ** 2
    l_rad = math.radians(mean_long)
    eq_time = 4. * math.degrees(y * math.sin(2 * l_rad) - 2 * eccent * math.sin(m_rad)
                                + 4 * eccent * y * math.sin(m_rad) * math.cos(2 * l_rad)
                                - 0.5 * y * y * math.sin(4 * l_rad) - 1.25 * eccent * eccent * math.sin(2 * m_rad))

    day_fraction = (julian_gmt + 0.5) % 1.
    true_solar_time = (day_fraction * 1440. + eq_time + 4. * lon) % 1440.
    hour_angle = true_solar_time / 4. - 180.
    lat_rad = math.radians(lat)
    cos_zenith = (math.sin(lat_rad) * math.sin(declination)
                  + math.cos(lat_rad) * math.cos(declination) * math.cos(math.radians(hour_angle)))
    cos_zenith = min(1., max(-1., cos_zenith))
    return 90. - math.degrees(math.acos(cos_zenith))


def clear_sky_iswr(lat: float, lon: float, altitude: float, julian_gmt: float) -> float:
    """
    Clear sky global radiation on a horizontal surface (W/m2).

    Top of atmosphere radiation attenuated by a clear sky transmissivity that
    grows with altitude (FAO-56).
    """
    elevation = solar_elevation(lat, lon, julian_gmt)
    if elevation <= 0.:
        return 0.
    doy = (julian_gmt - JULIAN_UNIX_EPOCH) % 365.25
    eccentricity = 1. + 0.033 * math.cos(2. * math.pi * doy / 365.25)
    toa = SOLAR_CONSTANT * eccentricity * math.sin(math.radians(elevation))
    return toa * (0.75 + 2e-5 * altitude)


def kasten_cloudiness(clearness: float) -> float:
    """Cloudiness (0-1) from a clearness index, after Kasten and Czeplak (1980)."""
    if clearness >= 1.:
        return 0.
    cloudiness = ((1. - clearness) / 0.75) ** (1. / 3.4)
    return min(cloudiness, 1.)


def lhomme_cloudiness(clearness: float) -> float:
    """Cloudiness (0-1) from a clearness index, after Lhomme et al. (2007)."""
    cloudiness = 1.3 - 1.4 * clearness
    return min(1., max(0., cloudiness))


CLOUDINESS_MODELS = {
    "KASTEN": kasten_cloudiness,
    "LHOMME": lhomme_cloudiness,
    "CRAWFORD": lhomme_cloudiness,
}
