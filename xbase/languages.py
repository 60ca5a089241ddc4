"""
xbase Languages
===============
Byte 29 of the header names a code page. The codec never guesses an
encoding: the table boundary resolves the byte here into a Python codec
name and the decimal separator that numeric text uses in that locale,
then hands both down.
"""

from enum import IntEnum
from typing import NamedTuple

from xbase.errors import UnsupportedLanguageError


class DbfLanguage(IntEnum):
    OEM = 0x00
    US_MSDOS_437 = 0x01
    INTERNATIONAL_MSDOS_850 = 0x02
    WINDOWS_ANSI_1252 = 0x03
    ANSI = 0x57
    EASTERN_EUROPEAN_MSDOS_852 = 0x64
    RUSSIAN_MSDOS_866 = 0x65
    NORDIC_MSDOS_865 = 0x66
    ICELANDIC_MSDOS_861 = 0x67
    GREEK_MSDOS_737 = 0x6A
    TURKISH_MSDOS_857 = 0x6B
    CHINESE_WINDOWS_950 = 0x78
    CHINESE_WINDOWS_936 = 0x7A
    JAPANESE_WINDOWS_932 = 0x7B
    HEBREW_WINDOWS_1255 = 0x7D
    ARABIC_WINDOWS_1256 = 0x7E
    EASTERN_EUROPEAN_WINDOWS_1250 = 0xC8
    RUSSIAN_WINDOWS_1251 = 0xC9
    TURKISH_WINDOWS_1254 = 0xCA
    GREEK_WINDOWS_1253 = 0xCB


class TextFormat(NamedTuple):
    """How text and numeric text are written for one language id."""
    encoding: str
    decimal_separator: str


_FORMATS: dict[int, TextFormat] = {
    DbfLanguage.OEM: TextFormat("ascii", ","),
    DbfLanguage.ANSI: TextFormat("ascii", ","),
    DbfLanguage.US_MSDOS_437: TextFormat("cp437", "."),
    DbfLanguage.INTERNATIONAL_MSDOS_850: TextFormat("cp850", "."),
    DbfLanguage.WINDOWS_ANSI_1252: TextFormat("cp1252", "."),
    DbfLanguage.GREEK_MSDOS_737: TextFormat("cp737", ","),
    DbfLanguage.EASTERN_EUROPEAN_MSDOS_852: TextFormat("cp852", ","),
    DbfLanguage.TURKISH_MSDOS_857: TextFormat("cp857", ","),
    DbfLanguage.ICELANDIC_MSDOS_861: TextFormat("cp861", ","),
    DbfLanguage.NORDIC_MSDOS_865: TextFormat("cp865", ","),
    DbfLanguage.RUSSIAN_MSDOS_866: TextFormat("cp866", ","),
    DbfLanguage.CHINESE_WINDOWS_950: TextFormat("cp950", "."),
    DbfLanguage.CHINESE_WINDOWS_936: TextFormat("cp936", "."),
    DbfLanguage.JAPANESE_WINDOWS_932: TextFormat("cp932", "."),
    DbfLanguage.HEBREW_WINDOWS_1255: TextFormat("cp1255", "."),
    DbfLanguage.ARABIC_WINDOWS_1256: TextFormat("cp1256", "."),
    DbfLanguage.EASTERN_EUROPEAN_WINDOWS_1250: TextFormat("cp1250", ","),
    DbfLanguage.RUSSIAN_WINDOWS_1251: TextFormat("cp1251", " "),
    DbfLanguage.TURKISH_WINDOWS_1254: TextFormat("cp1254", ","),
    DbfLanguage.GREEK_WINDOWS_1253: TextFormat("cp1253", ","),
}


def resolve_language(language: int) -> TextFormat:
    """Map a language byte to its text format; unknown ids are a capability error."""
    try:
        return _FORMATS[language]
    except KeyError:
        raise UnsupportedLanguageError(language) from None


def is_known_language(language: int) -> bool:
    return language in _FORMATS
