#! /usr/bin/env python3
# -*- coding: utf-8 -*-

import binascii
import datetime
import decimal
import logging
import math
import os
import plistlib
import re
import shutil
import sys
import time
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor, as_completed
from xml.etree import ElementTree as ET
from xml.parsers.expat import ExpatError

from ._version import __version__

description = f"""
UFO Formatter (version {__version__}):

This tool rewrites the glyph, property list and feature
files inside of one or more UFOs with a deterministic
XML formatting.
"""


log = logging.getLogger(__name__)


def main(args=None):
    import argparse

    parser = argparse.ArgumentParser(prog="ufofmt", description=description)
    parser.add_argument("ufoPaths",
                        metavar="UFO_PATH",
                        help="Path to a UFO to format.",
                        nargs="+")
    parser.add_argument("-s", "--singlequotes",
                        help="Format XML declaration and attribute values "
                             "with single quotes.",
                        action="store_true")
    parser.add_argument("--indent-space",
                        help="Use space characters for indentation "
                             "(default is tab).",
                        action="store_true")
    parser.add_argument("--indent-number",
                        type=int,
                        default=DEFAULT_INDENT_COUNT,
                        help="Number of indentation characters per indent "
                             f"level, 1 - {MAX_INDENT_COUNT} (default is "
                             f"{DEFAULT_INDENT_COUNT}).")
    parser.add_argument("--out-ext",
                        metavar="EXT",
                        help="Write the formatted UFO to a path with this "
                             "extension instead of the input path.")
    parser.add_argument("--out-name",
                        metavar="SUFFIX",
                        help="Write the formatted UFO to a path with this "
                             "string appended to the name, before the "
                             "extension.")
    parser.add_argument("-t", "--time",
                        help="Display the total formatting duration.",
                        action="store_true")
    parser.add_argument("-v", "--verbose",
                        help="Print more info to console.",
                        action="store_true")
    parser.add_argument("-q", "--quiet",
                        help="Suppress all non-error messages.",
                        action="store_true")
    parser.add_argument("--version",
                        action="version",
                        version=f"%(prog)s {__version__}")
    args = parser.parse_args(args)

    if args.verbose and args.quiet:
        parser.error("--quiet and --verbose options are mutually exclusive.")
    logLevel = "DEBUG" if args.verbose else "ERROR" if args.quiet else "INFO"
    logging.basicConfig(level=logLevel, format="%(message)s")

    try:
        policy = FormatPolicy(
            indentChar=" " if args.indent_space else "\t",
            indentCount=args.indent_number,
            quoteChar="'" if args.singlequotes else "\"",
            outputExtension=args.out_ext,
            outputNameSuffix=args.out_name)
    except ConfigError as e:
        parser.error(str(e))

    start = time.time()
    reports = normalizeUFOs(args.ufoPaths, policy)
    runtime = time.time() - start

    for report in reports:
        if report.succeeded:
            print(f"[OK] {report.outputPath}")
        else:
            print(f"[ERROR] {report.ufoPath}")
    if args.time:
        print(f"Total duration: {runtime:.4f} seconds")

    if all(report.succeeded for report in reports):
        return 0
    return 1


# ------
# Errors
# ------

class UFOFormatError(Exception):
    pass


class ConfigError(UFOFormatError):
    pass


class PathError(UFOFormatError):
    pass


class ParseError(UFOFormatError):
    pass


class GlyphParseError(ParseError):
    pass


class PlistParseError(ParseError):
    pass


class WriteError(UFOFormatError):
    pass


# -------------
# Format Policy
# -------------

DEFAULT_INDENT_COUNT = 1
MAX_INDENT_COUNT = 4


class FormatPolicy(namedtuple("FormatPolicy", ["indentChar",
                                               "indentCount",
                                               "quoteChar",
                                               "outputExtension",
                                               "outputNameSuffix"])):
    """
    Formatting options for one run.

    The policy is validated when it is created and is passed
    to every writer and canonicalizer call. It is never
    modified afterwards.
    """

    __slots__ = ()

    def __new__(cls, indentChar="\t", indentCount=DEFAULT_INDENT_COUNT,
                quoteChar="\"", outputExtension=None, outputNameSuffix=None):
        if indentChar not in ("\t", " "):
            raise ConfigError(f"indentation char must be a tab or a space, "
                              f"not {indentChar!r}")
        if (isinstance(indentCount, bool) or not isinstance(indentCount, int)
                or not 1 <= indentCount <= MAX_INDENT_COUNT):
            raise ConfigError(f"indentation char number must have a value "
                              f"between 1 - {MAX_INDENT_COUNT}")
        if quoteChar not in ("\"", "'"):
            raise ConfigError(f"quote char must be a double or a single "
                              f"quote, not {quoteChar!r}")
        if outputExtension is not None and not outputExtension.lstrip("."):
            raise ConfigError("output extension must not be empty")
        if outputNameSuffix is not None and not outputNameSuffix:
            raise ConfigError("output name suffix must not be empty")
        return super().__new__(cls, indentChar, indentCount, quoteChar,
                               outputExtension, outputNameSuffix)

    @property
    def indent(self):
        return self.indentChar * self.indentCount

    @property
    def hasOutputOverride(self):
        return (self.outputExtension is not None
                or self.outputNameSuffix is not None)


# -------
# Results
# -------

class FormatResult(namedtuple("FormatResult", ["sourcePath",
                                               "destinationPath",
                                               "error"])):

    __slots__ = ()

    @property
    def succeeded(self):
        return self.error is None


class FormatReport(object):
    """
    The outcome of formatting one UFO.

    The results are held as a set: the order in which the
    file tasks finished carries no meaning.
    """

    def __init__(self, ufoPath, outputPath=None, results=(), error=None):
        self.ufoPath = ufoPath
        if outputPath is None:
            outputPath = ufoPath
        self.outputPath = outputPath
        self.results = frozenset(results)
        self.error = error

    def __repr__(self):
        status = "ok" if self.succeeded else "failed"
        return (f"<FormatReport {self.ufoPath!r} {status}: "
                f"{len(self.successes)} formatted, "
                f"{len(self.failures)} failed>")

    @property
    def successes(self):
        return frozenset(result for result in self.results if result.succeeded)

    @property
    def failures(self):
        return frozenset(result for result in self.results
                         if not result.succeeded)

    @property
    def succeeded(self):
        return self.error is None and not self.failures


# -------------
# Package Model
# -------------

metaInfoFileName = "metainfo.plist"
layerContentsFileName = "layercontents.plist"
layerInfoFileName = "layerinfo.plist"
contentsFileName = "contents.plist"
featuresFileName = "features.fea"
defaultLayerName = "public.default"
defaultLayerDirectory = "glyphs"
topLevelPlistFileNames = [
    metaInfoFileName,
    "fontinfo.plist",
    "groups.plist",
    "kerning.plist",
    "lib.plist",
    layerContentsFileName
]

UFOPackage = namedtuple("UFOPackage", ["path",
                                       "formatVersion",
                                       "formatVersionMinor",
                                       "layers",
                                       "glyphFiles",
                                       "plists",
                                       "features"])


def loadUFO(ufoPath):
    """
    Read the structure of a UFO: the format version, the
    layers, the glyph files listed in each layer and the
    property list and feature files that are present.

    The glyph, property list and feature files themselves
    are not parsed here.
    """
    if not os.path.isdir(ufoPath):
        raise PathError(f"{ufoPath}: not a valid UFO directory path")
    if not subpathExists(ufoPath, metaInfoFileName):
        raise ParseError(f"Required metainfo.plist file not in {ufoPath}")
    metaInfo = _readPackagePlist(ufoPath, metaInfoFileName)
    if not isinstance(metaInfo, dict):
        raise ParseError(f"metainfo.plist in {ufoPath} is not a dictionary")
    formatVersion = metaInfo.get("formatVersion")
    if formatVersion is None:
        raise ParseError(f"Required formatVersion value not defined "
                         f"in metainfo.plist in {ufoPath}")
    if isinstance(formatVersion, bool) or not isinstance(formatVersion, int):
        raise ParseError(f"Required formatVersion value not properly "
                         f"formatted in metainfo.plist in {ufoPath}")
    if not 1 <= formatVersion <= 3:
        raise ParseError(f"Unsupported UFO format "
                         f"({formatVersion}) in {ufoPath}")
    formatVersionMinor = metaInfo.get("formatVersionMinor", 0)
    if isinstance(formatVersionMinor, bool) or not isinstance(formatVersionMinor, int):
        raise ParseError(f"formatVersionMinor value not properly "
                         f"formatted in metainfo.plist in {ufoPath}")
    plists = [(fileName,) for fileName in topLevelPlistFileNames
              if subpathExists(ufoPath, fileName)]
    # layers
    if formatVersion >= 3 and subpathExists(ufoPath, layerContentsFileName):
        layers = _readLayerContents(ufoPath)
    elif subpathExists(ufoPath, defaultLayerDirectory):
        layers = [(defaultLayerName, defaultLayerDirectory)]
    else:
        layers = []
    glyphFiles = {}
    for _layerName, layerDirectory in layers:
        if not os.path.isdir(subpathJoin(ufoPath, layerDirectory)):
            raise ParseError(f"Layer directory {layerDirectory} not in "
                             f"{ufoPath}")
        if not subpathExists(ufoPath, layerDirectory, contentsFileName):
            raise ParseError(f"Required contents.plist file not in "
                             f"{subpathJoin(ufoPath, layerDirectory)}")
        contents = _readPackagePlist(ufoPath, layerDirectory, contentsFileName)
        if not isinstance(contents, dict) or not all(
                isinstance(fileName, str) for fileName in contents.values()):
            raise ParseError(f"contents.plist in "
                             f"{subpathJoin(ufoPath, layerDirectory)} "
                             f"is not a glyph name to file name mapping")
        glyphFiles[layerDirectory] = list(dict.fromkeys(contents.values()))
        plists.append((layerDirectory, contentsFileName))
        if subpathExists(ufoPath, layerDirectory, layerInfoFileName):
            plists.append((layerDirectory, layerInfoFileName))
    if subpathExists(ufoPath, featuresFileName):
        features = (featuresFileName,)
    else:
        features = None
    return UFOPackage(ufoPath, formatVersion, formatVersionMinor, layers,
                      glyphFiles, plists, features)


def _readLayerContents(ufoPath):
    layerContents = _readPackagePlist(ufoPath, layerContentsFileName)
    layers = []
    if isinstance(layerContents, list):
        for entry in layerContents:
            if (not isinstance(entry, list) or len(entry) != 2
                    or not all(isinstance(i, str) for i in entry)):
                break
            layers.append(tuple(entry))
        else:
            return layers
    raise ParseError(f"layercontents.plist in {ufoPath} is not a list of "
                     f"layer name and directory pairs")


def _readPackagePlist(ufoPath, *subpath):
    try:
        return subpathReadPlist(ufoPath, *subpath)
    except OSError as e:
        raise ParseError(f"Unable to read {subpathJoin(ufoPath, *subpath)}: "
                         f"{e.strerror or e}")
    except PlistParseError as e:
        raise ParseError(f"{subpathJoin(ufoPath, *subpath)}: {e}")


# ------------
# Format Tasks
# ------------

GLYPH_TASK = "glyph"
PLIST_TASK = "plist"
FEATURES_TASK = "features"

FormatTask = namedtuple("FormatTask", ["kind", "subpath"])


def collectTasks(package):
    """
    One task per property list, glyph and feature file.
    """
    tasks = [FormatTask(PLIST_TASK, subpath) for subpath in package.plists]
    for layerDirectory, fileNames in package.glyphFiles.items():
        for fileName in fileNames:
            tasks.append(FormatTask(GLYPH_TASK, (layerDirectory, fileName)))
    if package.features is not None:
        tasks.append(FormatTask(FEATURES_TASK, package.features))
    return tasks


def _formatGlyphData(data, policy):
    glyph = readGLIF(data)
    return normalizeGlyph(glyph, policy)


def _formatPlistData(data, policy):
    return normalizePropertyList(readPlist(data), policy)


def _formatFeaturesData(data, policy):
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Feature file is not valid UTF-8: {e}")
    return normalizeFeatures(text)


taskFormatters = {
    GLYPH_TASK: _formatGlyphData,
    PLIST_TASK: _formatPlistData,
    FEATURES_TASK: _formatFeaturesData,
}


def runTask(task, ufoPath, outputPath, policy):
    """
    Read, canonicalize and write one file.

    Errors are returned in the result instead of being raised.
    """
    sourcePath = subpathJoin(ufoPath, *task.subpath)
    destinationPath = subpathJoin(outputPath, *task.subpath)
    try:
        try:
            data = subpathReadData(ufoPath, *task.subpath)
        except OSError as e:
            raise ParseError(f"Unable to read file: {e.strerror or e}")
        text = taskFormatters[task.kind](data, policy)
        writeFile(text.encode("utf-8"), destinationPath,
                  createDirectories=outputPath != ufoPath)
    except UFOFormatError as error:
        return FormatResult(sourcePath, destinationPath, error)
    except RecursionError:
        error = ParseError("Data is nested too deeply")
        return FormatResult(sourcePath, destinationPath, error)
    except Exception as error:
        # a worker must not take down its sibling tasks
        log.debug("Unexpected error formatting %s", sourcePath, exc_info=True)
        return FormatResult(sourcePath, destinationPath, error)
    return FormatResult(sourcePath, destinationPath, None)


def formatTasks(tasks, ufoPath, outputPath, policy, maxWorkers=None):
    """
    Run the tasks on a thread pool and gather the results.

    Each worker returns its own result; the results are merged
    here, on the calling thread, as the workers finish.
    """
    if maxWorkers is None:
        maxWorkers = os.cpu_count() or 1
    results = set()
    with ThreadPoolExecutor(max_workers=maxWorkers) as executor:
        futures = [
            executor.submit(runTask, task, ufoPath, outputPath, policy)
            for task in tasks
        ]
        for future in as_completed(futures):
            result = future.result()
            if result.succeeded:
                log.debug('Formatted "%s".', result.destinationPath)
            results.add(result)
    return results


# ------------
# Package Loop
# ------------

def normalizeUFO(ufoPath, policy=None, maxWorkers=None):
    """
    Format every file in a UFO. Problems are recorded
    in the returned report, not raised.
    """
    if policy is None:
        policy = FormatPolicy()
    ufoPath = os.path.normpath(ufoPath)
    try:
        package = loadUFO(ufoPath)
    except (PathError, ParseError) as error:
        log.error("%s", error)
        return FormatReport(ufoPath, error=error)
    outputPath = getOutputPath(ufoPath, policy)
    # if the output is going to a different location,
    # copy the files this tool doesn't format (images,
    # data) to the new place first.
    if outputPath != ufoPath:
        try:
            duplicateUFO(ufoPath, outputPath)
        except OSError as e:
            error = WriteError(f"Unable to create {outputPath}: "
                               f"{e.strerror or e}")
            log.error("%s", error)
            return FormatReport(ufoPath, outputPath, error=error)
    tasks = collectTasks(package)
    log.info('Formatting "%s" (%d files).', os.path.basename(ufoPath),
             len(tasks))
    results = formatTasks(tasks, ufoPath, outputPath, policy,
                          maxWorkers=maxWorkers)
    report = FormatReport(ufoPath, outputPath, results)
    for result in sorted(report.failures, key=lambda r: r.sourcePath):
        log.error("%s: %s", result.sourcePath, result.error)
    return report


def normalizeUFOs(ufoPaths, policy=None, maxWorkers=None):
    """
    Format several UFOs, one after the other. A failure in
    one UFO doesn't stop the others.
    """
    return [normalizeUFO(ufoPath, policy, maxWorkers=maxWorkers)
            for ufoPath in ufoPaths]


# -------------
# Output Writer
# -------------

def getOutputPath(path, policy):
    """
    - Return the path unchanged if no override is defined.
    - Append the name suffix to the base name, before the extension.
    - Replace the extension. A leading period is optional.
    """
    path = os.path.normpath(path)
    if not policy.hasOutputOverride:
        return path
    head, tail = os.path.split(path)
    root, extension = os.path.splitext(tail)
    if policy.outputNameSuffix is not None:
        root += policy.outputNameSuffix
    if policy.outputExtension is not None:
        extension = "." + policy.outputExtension.lstrip(".")
    return os.path.join(head, root + extension)


def writeFile(data, path, createDirectories=False):
    """
    Write data to a file.

    This will only modify the file if the
    file contains data that is different
    from the new data.
    """
    try:
        if os.path.exists(path):
            with open(path, "rb") as f:
                existing = f.read()
            if existing == data:
                return False
        elif createDirectories:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise WriteError(f"Unable to write {path}: {e.strerror or e}")
    return True


def duplicateUFO(inPath, outPath):
    """
    Duplicate an entire UFO. The formatted files
    are written over the copies afterwards.
    """
    if os.path.exists(outPath):
        log.debug('Removing existing "%s".', outPath)
        shutil.rmtree(outPath)
    shutil.copytree(inPath, outPath)


# -------------
# Property List
# -------------

def readPlist(data):
    """
    Convert property list data into a Python object.
    Dictionary key order is kept as found in the data.
    """
    try:
        return plistlib.loads(data, fmt=plistlib.FMT_XML)
    except RecursionError:
        raise PlistParseError("Invalid property list: nested too deeply")
    except (ValueError, TypeError, AttributeError, ExpatError) as e:
        raise PlistParseError(f"Invalid property list: {e}")


def normalizePropertyList(data, policy):
    writer = XMLWriter(policy, isPropertyList=True)
    writer.beginElement("plist", attrs=dict(version="1.0"))
    writer.propertyListObject(data)
    writer.endElement("plist")
    writer.raw("")
    return writer.getText()


# --------
# Features
# --------

def normalizeFeatures(text):
    """
    - Convert all line endings to LF.
    - Nothing else is modified.
    """
    return text.replace("\r\n", xmlLineBreak).replace("\r", xmlLineBreak)


# ----
# GLIF
# ----

def normalizeGLIFString(text, policy):
    glyph = readGLIF(text)
    return normalizeGlyph(glyph, policy)


def readGLIF(text):
    """
    Parse GLIF text (or bytes) into a glyph dict.

    Values that can't be read raise GlyphParseError.
    Nothing is silently dropped.
    """
    try:
        tree = ET.fromstring(text)
    except ET.ParseError as e:
        raise GlyphParseError(f"Invalid GLIF XML: {e}")
    if tree.tag != "glyph":
        raise GlyphParseError(f"Unexpected root element: {tree.tag}")
    glifVersion = tree.attrib.get("format")
    if glifVersion is None:
        raise GlyphParseError("Undefined GLIF format")
    try:
        glifVersion = int(glifVersion)
    except ValueError:
        raise GlyphParseError(f"Invalid GLIF format: {glifVersion}")
    if glifVersion not in (1, 2):
        raise GlyphParseError(f"Unsupported GLIF format: {glifVersion}")
    formatMinor = tree.attrib.get("formatMinor")
    if formatMinor is not None:
        try:
            formatMinor = int(formatMinor)
        except ValueError:
            raise GlyphParseError(f"Invalid GLIF formatMinor: {formatMinor}")
    name = tree.attrib.get("name")
    if not name:
        raise GlyphParseError("Undefined glyph name")
    glyph = dict(
        name=name,
        format=glifVersion,
        formatMinor=formatMinor,
        unicodes=[],
        advance=None,
        image=None,
        outline=[],
        anchors=[],
        guidelines=[],
        lib=None,
        note=None
    )
    for element in tree:
        tag = element.tag
        if tag == "advance":
            glyph["advance"] = _readGlifAdvance(element)
        elif tag == "unicode":
            glyph["unicodes"].append(_readGlifUnicode(element))
        elif tag == "note":
            glyph["note"] = element.text
        elif tag == "image":
            glyph["image"] = _readGlifImage(element)
        elif tag == "guideline":
            glyph["guidelines"].append(_readGlifGuideline(element))
        elif tag == "anchor":
            glyph["anchors"].append(_readGlifAnchor(element))
        elif tag == "outline":
            glyph["outline"] = _readGlifOutline(element)
        elif tag == "lib":
            glyph["lib"] = _readGlifLib(element)
        else:
            raise GlyphParseError(f"Unknown element in glyph: {tag}")
    return glyph


def normalizeGlyph(glyph, policy):
    """
    Write a glyph dict as canonical GLIF text.
    The glyph dict is not modified.
    """
    writer = XMLWriter(policy)
    attrs = dict(name=glyph["name"], format=glyph["format"])
    if glyph.get("formatMinor"):
        attrs["formatMinor"] = glyph["formatMinor"]
    writer.beginElement("glyph", attrs=attrs)
    for uni in glyph.get("unicodes", []):
        writer.simpleElement("unicode", attrs=dict(hex=uni))
    _writeGlifAdvance(glyph.get("advance"), writer)
    if glyph.get("image"):
        writer.simpleElement("image", attrs=glyph["image"])
    _writeGlifOutline(glyph.get("outline"), writer)
    for anchor in glyph.get("anchors", []):
        writer.simpleElement("anchor", attrs=anchor)
    for guideline in glyph.get("guidelines", []):
        writer.simpleElement("guideline", attrs=guideline)
    _writeGlifLib(glyph.get("lib"), writer)
    _writeGlifNote(glyph.get("note"), writer)
    writer.endElement("glyph")
    writer.raw("")
    return writer.getText()


def _readFloat(element, attr, default=None, required=False):
    value = element.attrib.get(attr)
    if value is None:
        if required:
            raise GlyphParseError(f"Required {attr} attribute not defined "
                                  f"in <{element.tag}>")
        return default
    number = _parseNumber(value)
    if number is None:
        raise GlyphParseError(f"Invalid {attr} value in <{element.tag}>: "
                              f"{value!r}")
    return number


_numberPattern = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")


def _parseNumber(text):
    """
    - Only plain decimal numbers are valid, without surrounding
      whitespace, digit separators or special values.
    - Return None for anything else.
    """
    if not _numberPattern.fullmatch(text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return number


def _readOptionalAttributes(element, attrs, names):
    for name in names:
        value = element.attrib.get(name)
        if value is not None:
            attrs[name] = value
    color = element.attrib.get("color")
    if color is not None:
        attrs["color"] = _normalizeColorString(color)


def _readGlifUnicode(element):
    """
    - Write hex value as all uppercase, zero padded string.
    """
    v = element.attrib.get("hex")
    if not v:
        raise GlyphParseError("Required hex attribute not defined in <unicode>")
    try:
        d = int(v, 16)
    except ValueError:
        d = -1
    if not 0 <= d <= 0x10FFFF:
        raise GlyphParseError(f"Invalid hex value in <unicode>: {v!r}")
    return f"{d:04X}"


def _readGlifAdvance(element):
    return dict(
        width=_readFloat(element, "width", default=0.0),
        height=_readFloat(element, "height", default=0.0)
    )


def _writeGlifAdvance(advance, writer):
    """
    - Don't write default values (width=0, height=0)
    - Don't write an empty element.
    """
    if not advance:
        return
    attrs = {}
    if advance.get("width"):
        attrs["width"] = advance["width"]
    if advance.get("height"):
        attrs["height"] = advance["height"]
    if not attrs:
        return
    writer.simpleElement("advance", attrs=attrs)


def _readGlifImage(element):
    fileName = element.attrib.get("fileName")
    if not fileName:
        raise GlyphParseError("Required fileName attribute not defined "
                              "in <image>")
    attrs = dict(
        fileName=fileName
    )
    attrs.update(_readGlifTransformation(element))
    _readOptionalAttributes(element, attrs, ())
    return attrs


def _readGlifAnchor(element):
    attrs = dict(
        x=_readFloat(element, "x", required=True),
        y=_readFloat(element, "y", required=True)
    )
    _readOptionalAttributes(element, attrs, ("name", "identifier"))
    return attrs


def _readGlifGuideline(element):
    """
    - Either x or y must be defined.
    - If angle is defined, x and y must be defined.
    """
    attrs = {}
    for attr in ("x", "y", "angle"):
        value = _readFloat(element, attr)
        if value is not None:
            attrs[attr] = value
    if "x" not in attrs and "y" not in attrs:
        raise GlyphParseError("Neither x nor y defined in <guideline>")
    if "angle" in attrs and ("x" not in attrs or "y" not in attrs):
        raise GlyphParseError("Angle defined without x and y in <guideline>")
    _readOptionalAttributes(element, attrs, ("name", "identifier"))
    return attrs


def _readGlifLib(element):
    if not len(element):
        return None
    try:
        return _convertPlistElementToObject(element[0])
    except RecursionError:
        raise GlyphParseError("Invalid data in <lib>: nested too deeply")
    except (ValueError, TypeError, AttributeError, binascii.Error) as e:
        raise GlyphParseError(f"Invalid data in <lib>: {e}")


def _writeGlifLib(lib, writer):
    """
    - Don't write an empty element.
    """
    if not lib:
        return
    writer.beginElement("lib")
    writer.propertyListObject(lib)
    writer.endElement("lib")


def _writeGlifNote(value, writer):
    """
    - Don't write an empty element.
    """
    if not value:
        return
    if not value.strip():
        return
    writer.simpleElement("note", value=xmlEscapeText(value))


def _readGlifOutline(element):
    outline = []
    for subElement in element:
        tag = subElement.tag
        if tag == "contour":
            outline.append(_readGlifContour(subElement))
        elif tag == "component":
            outline.append(_readGlifComponent(subElement))
        else:
            raise GlyphParseError(f"Unknown element in <outline>: {tag}")
    return outline


def _writeGlifOutline(outline, writer):
    """
    - Don't write an empty element.
    - Retain contour and component order.
    """
    if not outline:
        return
    writer.beginElement("outline")
    for obj in outline:
        if obj["type"] == "contour":
            attrs = {}
            identifier = obj.get("identifier")
            if identifier is not None:
                attrs["identifier"] = identifier
            if not obj["points"]:
                writer.simpleElement("contour", attrs=attrs)
                continue
            writer.beginElement("contour", attrs=attrs)
            for point in obj["points"]:
                writer.simpleElement("point", attrs=point)
            writer.endElement("contour")
        else:
            attrs = {k: v for k, v in obj.items() if k != "type"}
            writer.simpleElement("component", attrs=attrs)
    writer.endElement("outline")


def _readGlifContour(element):
    points = []
    for subElement in element:
        if subElement.tag != "point":
            raise GlyphParseError(f"Unknown element in <contour>: "
                                  f"{subElement.tag}")
        points.append(_readGlifPointAttributes(subElement))
    contour = dict(type="contour", points=points)
    identifier = element.attrib.get("identifier")
    if identifier is not None:
        contour["identifier"] = identifier
    return contour


_glifPointTypes = ("move", "line", "curve", "qcurve", "offcurve")


def _readGlifPointAttributes(element):
    """
    - x and y must be defined.
    - Don't write default smooth value (no).
    - Don't write smooth for offcurves.
    - Don't write default point type attribute (offcurve).
    """
    attrs = dict(
        x=_readFloat(element, "x", required=True),
        y=_readFloat(element, "y", required=True)
    )
    typ = element.attrib.get("type", "offcurve")
    if typ not in _glifPointTypes:
        raise GlyphParseError(f"Unknown point type: {typ}")
    if typ != "offcurve":
        attrs["type"] = typ
        smooth = element.attrib.get("smooth")
        if smooth == "yes":
            attrs["smooth"] = "yes"
    for attr in ("name", "identifier"):
        value = element.attrib.get(attr)
        if value is not None:
            attrs[attr] = value
    return attrs


def _readGlifComponent(element):
    """
    - base must be defined.
    - Don't write default transformation values.
    """
    base = element.attrib.get("base")
    if not base:
        raise GlyphParseError("Required base attribute not defined "
                              "in <component>")
    component = dict(type="component", base=base)
    component.update(_readGlifTransformation(element))
    identifier = element.attrib.get("identifier")
    if identifier is not None:
        component["identifier"] = identifier
    return component


_glifDefaultTransformation = dict(
    xScale=1,
    xyScale=0,
    yxScale=0,
    yScale=1,
    xOffset=0,
    yOffset=0
)


def _readGlifTransformation(element):
    attrs = {}
    for attr, default in _glifDefaultTransformation.items():
        value = _readFloat(element, attr, default=default)
        if value != default:
            attrs[attr] = value
    return attrs


def _normalizeColorString(value):
    """
    - Write the string as comma separated numbers, following the
      number normalization rules.
    """
    parts = value.split(",")
    if len(parts) != 4:
        raise GlyphParseError(f"Invalid color string: {value!r}")
    components = [_parseNumber(i) for i in parts]
    if None in components:
        raise GlyphParseError(f"Invalid color string: {value!r}")
    if not all(0 <= i <= 1 for i in components):
        raise GlyphParseError(f"Color value out of range: {value!r}")
    return ",".join(xmlConvertFloat(i) for i in components)


# Adapted from plistlib.datetime._date_from_string()
def _dateFromString(text):
    _dateParser = re.compile(r"(?P<year>\d\d\d\d)(?:-(?P<month>\d\d)"
                             r"(?:-(?P<day>\d\d)(?:T(?P<hour>\d\d)"
                             r"(?::(?P<minute>\d\d)"
                             r"(?::(?P<second>\d\d))?)?)?)?)?Z")
    gd = _dateParser.match(text).groupdict()
    lst = []
    for key in ('year', 'month', 'day', 'hour', 'minute', 'second'):
        val = gd[key]
        if val is None:
            break
        lst.append(int(val))
    return datetime.datetime(*lst)


def _dateToString(data):
    return (f'{data.year:04d}-{data.month:02d}-'
            f'{data.day:02d}T{data.hour:02d}:'
            f'{data.minute:02d}:{data.second:02d}Z')


def _convertPlistElementToObject(element):
    tag = element.tag
    if tag == "array":
        return [_convertPlistElementToObject(subElement)
                for subElement in element]
    elif tag == "dict":
        obj = {}
        key = None
        for subElement in element:
            if subElement.tag == "key":
                key = subElement.text or ""
            elif key is None:
                raise ValueError(f"<{subElement.tag}> without a <key>")
            else:
                obj[key] = _convertPlistElementToObject(subElement)
                key = None
        return obj
    elif tag == "string":
        if not element.text:
            return ""
        return element.text
    elif tag == "data":
        if not element.text:
            return b''
        return binascii.a2b_base64(element.text)
    elif tag == "date":
        return _dateFromString(element.text)
    elif tag == "true":
        return True
    elif tag == "false":
        return False
    elif tag == "real":
        value = float(element.text)
        if not math.isfinite(value):
            raise ValueError(f"non-finite real: {element.text}")
        return value
    elif tag == "integer":
        return int(element.text)
    raise ValueError(f"unknown property list element <{tag}>")


# -----------------
# XML Normalization
# -----------------

xmlDeclarationTemplate = "<?xml version={q}1.0{q} encoding={q}UTF-8{q}?>"
plistDocTypeTemplate = ("<!DOCTYPE plist PUBLIC {q}-//Apple//DTD PLIST 1.0//EN{q} "
                        "{q}http://www.apple.com/DTDs/PropertyList-1.0.dtd{q}>")
xmlTextMaxLineLength = 70
xmlLineBreak = "\n"
xmlAttributeOrder = """
name
base
format
formatMinor
fileName
hex
width
height
x
y
angle
xScale
xyScale
yxScale
yScale
xOffset
yOffset
type
smooth
color
identifier
""".strip().splitlines()
xmlAttributeOrder = {attr: index for index, attr in enumerate(xmlAttributeOrder)}


def xmlDeclaration(policy):
    return xmlDeclarationTemplate.format(q=policy.quoteChar)


def plistDocType(policy):
    return plistDocTypeTemplate.format(q=policy.quoteChar)


class XMLWriter(object):

    def __init__(self, policy, isPropertyList=False, declaration=True):
        self._policy = policy
        self._lines = []
        if declaration:
            self._lines.append(xmlDeclaration(policy))
            if isPropertyList:
                self._lines.append(plistDocType(policy))
        self._indentLevel = 0
        self._stack = []

    # text retrieval

    def getText(self):
        assert not self._stack
        return xmlLineBreak.join(self._lines)

    # writing

    def raw(self, line):
        if self._indentLevel:
            i = self._policy.indent * self._indentLevel
            line = i + line
        self._lines.append(line)

    def simpleElement(self, tag, attrs=None, value=None):
        if attrs:
            attrs = self.attributesToString(attrs)
            line = f"<{tag} {attrs}"
        else:
            line = f"<{tag}"
        if value is not None:
            line = f"{line}>{value}</{tag}>"
        else:
            line = f"{line}/>"
        self.raw(line)

    def beginElement(self, tag, attrs=None):
        if attrs:
            attrs = self.attributesToString(attrs)
            line = f"<{tag} {attrs}>"
        else:
            line = f"<{tag}>"
        self.raw(line)
        self._stack.append(tag)
        self._indentLevel += 1

    def endElement(self, tag):
        assert self._stack
        assert self._stack[-1] == tag
        del self._stack[-1]
        self._indentLevel -= 1
        line = f"</{tag}>"
        self.raw(line)

    # property list

    def propertyListObject(self, data):
        if data is None:
            return
        if isinstance(data, (list, tuple)):
            self._plistArray(data)
        elif isinstance(data, dict):
            self._plistDict(data)
        elif isinstance(data, str):
            self._plistString(data)
        elif isinstance(data, bool):
            self._plistBoolean(data)
        elif isinstance(data, int):
            self._plistInt(data)
        elif isinstance(data, float):
            self._plistFloat(data)
        elif isinstance(data, bytes):
            self._plistData(data)
        elif isinstance(data, datetime.datetime):
            self._plistDate(data)
        else:
            raise UFOFormatError(f"Unknown data type in property list: "
                                 f"{repr(type(data))}")

    def _plistArray(self, data):
        self.beginElement("array")
        for value in data:
            self.propertyListObject(value)
        self.endElement("array")

    def _plistDict(self, data):
        self.beginElement("dict")
        for key, value in data.items():
            self.simpleElement("key", value=xmlEscapeText(key))
            self.propertyListObject(value)
        self.endElement("dict")

    def _plistString(self, data):
        self.simpleElement("string", value=xmlEscapeText(data))

    def _plistBoolean(self, data):
        if data:
            self.simpleElement("true")
        else:
            self.simpleElement("false")

    def _plistFloat(self, data):
        try:
            data = xmlConvertFloat(data)
        except ValueError as e:
            raise UFOFormatError(f"Invalid real in property list: {e}")
        self.simpleElement("real", value=data)

    def _plistInt(self, data):
        data = xmlConvertInt(data)
        self.simpleElement("integer", value=data)

    def _plistDate(self, data):
        data = _dateToString(data)
        self.simpleElement("date", value=data)

    def _plistData(self, data):
        data = _encode_base64(data, maxlinelength=xmlTextMaxLineLength)
        if not data:
            self.simpleElement("data", value="")
        else:
            self.beginElement("data")
            for line in data.decode("ascii").splitlines():
                self.raw(line)
            self.endElement("data")

    # support

    def attributesToString(self, attrs):
        """
        - Sort the known attributes in the preferred order.
        - Sort unknown attributes in alphabetical order and
          place them after the known attributes.
        - Format as space separated name="value", using the
          quote character of the policy.
        """
        quote = self._policy.quoteChar
        sorter = [
            (xmlAttributeOrder.get(attr, 100), attr, value) for (attr, value) in attrs.items()
        ]
        formatted = []
        for _index, attr, value in sorted(sorter):
            value = xmlConvertValue(value, quote)
            formatted.append(f"{attr}={quote}{value}{quote}")
        return " ".join(formatted)


def _encode_base64(s, maxlinelength=76):
    # copied from base64.encodebytes(), with added maxlinelength argument
    maxbinsize = (maxlinelength//4)*3
    pieces = []
    for i in range(0, len(s), maxbinsize):
        chunk = s[i: i + maxbinsize]
        pieces.append(binascii.b2a_base64(chunk))
    return b''.join(pieces)


def xmlEscapeText(text):
    if text:
        text = text.replace("&", "&amp;")
        text = text.replace("<", "&lt;")
        text = text.replace(">", "&gt;")
        text = text.replace("\r", "&#13;")
    return text


def xmlEscapeAttribute(text, quote="\""):
    text = xmlEscapeText(text)
    if quote == "'":
        text = text.replace("'", "&apos;")
    else:
        text = text.replace("\"", "&quot;")
    text = text.replace("\n", "&#10;")
    text = text.replace("\t", "&#9;")
    return text


def xmlConvertValue(value, quote="\""):
    if isinstance(value, float):
        return xmlConvertFloat(value)
    elif isinstance(value, int):
        return xmlConvertInt(value)
    return xmlEscapeAttribute(value, quote)


def xmlConvertFloat(value):
    """
    - Use the shortest decimal string that reads back
      as exactly the same double.
    - Always write a fractional part: 400 is "400.0".
    - Never write exponent notation.
    - Write negative zero as "0.0".
    """
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"Cannot convert {value!r} to a decimal string")
    if value == 0:
        return "0.0"
    string = repr(value)
    if "e" in string:
        string = format(decimal.Decimal(string), "f")
    if "." not in string:
        string += ".0"
    return string


def xmlConvertInt(value):
    return str(value)


# ---------------
# Path Operations
# ---------------

def subpathJoin(ufoPath, *subpath):
    """
    Join path parts.
    """
    return os.path.join(ufoPath, *subpath)


def subpathExists(ufoPath, *subpath):
    """
    Get a boolean indicating if a path exists.
    """
    path = subpathJoin(ufoPath, *subpath)
    return os.path.exists(path)


def subpathReadData(ufoPath, *subpath):
    """
    Read the contents of a file as bytes.
    """
    path = subpathJoin(ufoPath, *subpath)
    with open(path, "rb") as f:
        data = f.read()
    return data


def subpathReadPlist(ufoPath, *subpath):
    """
    Read the contents of a property list
    and convert it into a Python object.
    """
    return readPlist(subpathReadData(ufoPath, *subpath))


if __name__ == "__main__":
    sys.exit(main())
