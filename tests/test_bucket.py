"""Functional tests for the Bucket API."""

import gc
import io
import re
from unittest.mock import patch

import pytest

from docstore.collection import ReadConcern, WriteConcern
from gridstore.bucket import Bucket
from gridstore.codecs import GridFileCodec, TypeMap
from gridstore.collection_wrapper import CollectionWrapper
from gridstore.exceptions import (
    CorruptFileError,
    FileNotFoundError as GridFileNotFoundError,
    InvalidArgumentError,
    StreamError,
)
from gridstore.types import GridFile


INPUT_DATA_AND_EXPECTED_CHUNKS = [
    (b'', 0),
    (b'foobar', 1),
    (b'a' * 261120, 1),
    (b'a' * 261121, 2),
    (b'a' * 522240, 2),
    (b'a' * 522241, 3),
    (b'foobar' * 43521, 2),
]

NONEXISTENT_FILENAME_AND_REVISION = [
    ('filename', 2),
    ('filename', -3),
    ('nonexistent-filename', 0),
    ('nonexistent-filename', -1),
]


class Document(dict):
    """dict subclass used to observe type map application."""


class UnusableStream(io.RawIOBase):
    """Source or destination whose every I/O call fails."""

    name = 'unusable://temp'

    def readable(self):
        return True

    def writable(self):
        return True

    def readinto(self, buffer):
        raise OSError('read failed')

    def write(self, data):
        raise OSError('write failed')


def download(bucket, file_id):
    destination = io.BytesIO()
    bucket.download_to_stream(file_id, destination)
    return destination.getvalue()


def download_by_name(bucket, filename, **options):
    destination = io.BytesIO()
    bucket.download_to_stream_by_name(filename, destination, **options)
    return destination.getvalue()


@pytest.fixture
def invalid_sources(tmp_path):
    """Values that are not readable binary streams, including a write-only file."""
    write_only = open(tmp_path / 'write_only.bin', 'wb')
    yield [None, 'string', 123, write_only, io.StringIO('x')]
    write_only.close()


@pytest.fixture
def invalid_destinations(tmp_path):
    """Values that are not writable binary streams, including a read-only file."""
    path = tmp_path / 'read_only.bin'
    path.write_bytes(b'')
    read_only = open(path, 'rb')
    yield [None, 'string', 123, read_only, io.StringIO()]
    read_only.close()


class TestConstruction:
    """Bucket options and accessors."""

    def test_valid_options(self, database):
        Bucket(
            database,
            bucket_name='test',
            chunk_size_bytes=8192,
            read_concern=ReadConcern(timeout=1.0),
            write_concern=WriteConcern(journal=False, timeout=1.0),
            disable_md5=True,
        )

    @pytest.mark.parametrize('options', [
        {'bucket_name': 123},
        {'bucket_name': ''},
        {'chunk_size_bytes': '1024'},
        {'chunk_size_bytes': 1.5},
        {'chunk_size_bytes': True},
        {'codec': 'codec'},
        {'disable_md5': 1},
        {'read_concern': 'local'},
        {'type_map': 'array'},
        {'write_concern': 1},
        {'unknown_option': True},
    ])
    def test_option_type_checks(self, database, options):
        with pytest.raises(InvalidArgumentError):
            Bucket(database, **options)

    def test_requires_database(self):
        with pytest.raises(InvalidArgumentError):
            Bucket('not-a-database')

    def test_chunk_size_must_be_positive(self, database):
        with pytest.raises(InvalidArgumentError, match=re.escape('Expected "chunk_size_bytes" option to be >= 1, 0 given')):
            Bucket(database, chunk_size_bytes=0)

    def test_codec_and_type_map_cannot_be_combined(self, database):
        with pytest.raises(InvalidArgumentError, match='Cannot provide both "codec" and "type_map" options'):
            Bucket(database, codec=GridFileCodec(), type_map=TypeMap())

    def test_bucket_name_default_and_custom(self, database):
        assert Bucket(database).bucket_name == 'fs'
        assert Bucket(database, bucket_name='custom_fs').bucket_name == 'custom_fs'

    def test_chunk_size_default_and_custom(self, database):
        assert Bucket(database).chunk_size_bytes == 261120
        assert Bucket(database, chunk_size_bytes=8192).chunk_size_bytes == 8192

    def test_database_name(self, bucket):
        assert bucket.database_name == 'gridstore_test'

    def test_collections(self, bucket):
        assert bucket.files_collection.name == 'fs.files'
        assert bucket.chunks_collection.name == 'fs.chunks'


class TestUpload:
    """upload_from_stream and open_upload_stream."""

    def test_upload_from_stream_with_options(self, bucket, upload, files_collection, chunks_collection):
        file_id = upload('filename', b'foobar', file_id='custom-id', chunk_size_bytes=2, metadata={'foo': 'bar'})

        assert file_id == 'custom-id'
        assert files_collection.count_documents() == 1
        assert chunks_collection.count_documents() == 3
        assert files_collection.find_one({'_id': file_id})['metadata'] == {'foo': 'bar'}

    def test_uploading_an_empty_file(self, bucket, upload, files_collection, chunks_collection):
        file_id = upload('filename', b'')

        assert download(bucket, file_id) == b''
        assert files_collection.count_documents() == 1
        assert chunks_collection.count_documents() == 0

        document = files_collection.find_one({'_id': file_id}, projection={'length': 1, 'md5': 1, '_id': 0})
        assert document == {'length': 0, 'md5': 'd41d8cd98f00b204e9800998ecf8427e'}

    def test_file_document_fields(self, bucket, upload, files_collection):
        file_id = upload('filename', b'foobar')

        document = files_collection.find_one({'_id': file_id})
        assert document['filename'] == 'filename'
        assert document['length'] == 6
        assert document['chunkSize'] == 261120
        assert document['md5'] == '3858f62230ac3c915f300c664312c63f'
        assert document['uploadDate'].tzinfo is not None
        assert 'metadata' not in document

    def test_disable_md5(self, upload, files_collection):
        file_id = upload('filename', b'data', disable_md5=True)

        assert 'md5' not in files_collection.find_one({'_id': file_id})

    def test_disable_md5_option_in_constructor(self, database, files_collection):
        bucket = Bucket(database, disable_md5=True)
        file_id = bucket.upload_from_stream('filename', io.BytesIO(b'data'))

        assert 'md5' not in files_collection.find_one({'_id': file_id})

    def test_upload_option_overrides_bucket_disable_md5(self, database, files_collection):
        bucket = Bucket(database, disable_md5=True)
        file_id = bucket.upload_from_stream('filename', io.BytesIO(b'data'), disable_md5=False)

        assert files_collection.find_one({'_id': file_id})['md5'] == '8d777f385d3dfec8815d20f7496026dc'

    def test_upload_from_stream_requires_source_stream(self, bucket, invalid_sources):
        for source in invalid_sources:
            with pytest.raises(InvalidArgumentError):
                bucket.upload_from_stream('filename', source)

    def test_upload_from_text_stream_is_rejected_before_storing(self, bucket, files_collection, chunks_collection):
        with pytest.raises(InvalidArgumentError):
            bucket.upload_from_stream('filename', io.StringIO('hello'))

        assert files_collection.count_documents() == 0
        assert chunks_collection.count_documents() == 0

    @pytest.mark.parametrize('data, options', [
        (b'other', {}),
        (b'', {}),
        (b'0123456789', {'chunk_size_bytes': 4}),
    ])
    def test_upload_with_existing_file_id_keeps_stored_file(self, bucket, upload, chunks_collection, data, options):
        upload('original', b'original', file_id='same')

        with pytest.raises(StreamError):
            upload('other', data, file_id='same', **options)

        assert download(bucket, 'same') == b'original'
        assert chunks_collection.count_documents({'files_id': 'same'}) == 1
        assert bucket.find_one({'_id': 'same'})['filename'] == 'original'

    def test_upload_from_stream_rejects_unknown_options(self, bucket):
        with pytest.raises(InvalidArgumentError):
            bucket.upload_from_stream('filename', io.BytesIO(b'foo'), revision=1)

    def test_upload_from_stream_fails(self, bucket, files_collection, chunks_collection):
        pattern = r'^Uploading file from "unusable://temp" to "gridfs://.*/.*/.*" failed\. GridFS filename: "filename"$'

        with pytest.raises(StreamError, match=pattern) as exc_info:
            bucket.upload_from_stream('filename', UnusableStream())

        assert isinstance(exc_info.value.__cause__, OSError)
        assert files_collection.count_documents() == 0
        assert chunks_collection.count_documents() == 0

    def test_open_upload_stream(self, bucket):
        stream = bucket.open_upload_stream('filename')
        stream.write(b'foobar')
        stream.close()

        assert download_by_name(bucket, 'filename') == b'foobar'

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_open_upload_stream_and_multiple_write_operations(self, bucket, data, expected_chunks):
        stream = bucket.open_upload_stream('filename')
        offset = 0

        while offset < len(data):
            expected_length = min(4096, len(data) - offset)
            written = stream.write(data[offset:offset + 4096])
            offset += written
            assert written == expected_length

        stream.close()

        assert download_by_name(bucket, 'filename') == data
        assert bucket.chunks_collection.count_documents() == expected_chunks

    def test_dangling_open_writable_stream_is_finalized(self, bucket, files_collection):
        stream = bucket.open_upload_stream('hello.txt', disable_md5=True)
        stream.write(b'Hello GridFS!!')
        del stream
        gc.collect()

        document = files_collection.find_one({'filename': 'hello.txt'})
        assert document is not None
        assert document['length'] == 14

    def test_writable_stream_left_open_at_exit_is_finalized(self, files_collection, chunks_collection, run_script):
        result = run_script("""
            import sys

            from docstore.database import Database
            from gridstore.bucket import Bucket

            bucket = Bucket(Database(sys.argv[1]))
            stream = bucket.open_upload_stream('hello.txt', disable_md5=True)
            stream.write(b'Hello GridFS!!')
        """)

        assert result.returncode == 0, result.stderr
        assert 'failed' not in result.stderr

        document = files_collection.find_one({'filename': 'hello.txt'})
        assert document is not None
        assert document['length'] == 14
        assert chunks_collection.count_documents({'files_id': document['_id']}) == 1


class TestDownload:
    """download_to_stream, open_download_stream and their by-name variants."""

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_download_to_stream(self, bucket, upload, chunks_collection, data, expected_chunks):
        file_id = upload('filename', data)

        assert chunks_collection.count_documents() == expected_chunks
        assert download(bucket, file_id) == data

    def test_download_to_stream_requires_destination_stream(self, bucket, upload, invalid_destinations):
        file_id = upload('filename', b'foo')

        for destination in invalid_destinations:
            with pytest.raises(InvalidArgumentError):
                bucket.download_to_stream(file_id, destination)

    def test_download_to_stream_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.download_to_stream('nonexistent-id', io.BytesIO())

    def test_download_to_stream_by_name(self, bucket, upload):
        upload('filename', b'foo')
        upload('filename', b'bar')
        upload('filename', b'baz')

        assert download_by_name(bucket, 'filename') == b'baz'
        assert download_by_name(bucket, 'filename', revision=-3) == b'foo'
        assert download_by_name(bucket, 'filename', revision=-2) == b'bar'
        assert download_by_name(bucket, 'filename', revision=-1) == b'baz'
        assert download_by_name(bucket, 'filename', revision=0) == b'foo'
        assert download_by_name(bucket, 'filename', revision=1) == b'bar'
        assert download_by_name(bucket, 'filename', revision=2) == b'baz'

    def test_download_to_stream_by_name_requires_destination_stream(self, bucket, upload, invalid_destinations):
        upload('filename', b'foo')

        for destination in invalid_destinations:
            with pytest.raises(InvalidArgumentError):
                bucket.download_to_stream_by_name('filename', destination)

    @pytest.mark.parametrize('filename, revision', NONEXISTENT_FILENAME_AND_REVISION)
    def test_download_to_stream_by_name_requires_filename_and_revision_to_exist(
        self, bucket, upload, filename, revision
    ):
        upload('filename', b'foo')
        upload('filename', b'bar')

        with pytest.raises(GridFileNotFoundError):
            bucket.download_to_stream_by_name(filename, io.BytesIO(), revision=revision)

    def test_download_to_stream_fails(self, bucket, upload):
        upload('filename', b'foo', file_id={'foo': 'bar'})
        pattern = (
            r'^Downloading file from "gridfs://.*/.*/.*" to "unusable://temp" failed\. '
            + re.escape('GridFS identifier: "{"_id": {"foo": "bar"}}"') + '$'
        )

        with pytest.raises(StreamError, match=pattern):
            bucket.download_to_stream({'foo': 'bar'}, UnusableStream())

    def test_download_to_stream_by_name_fails(self, bucket, upload):
        upload('filename', b'foo')
        pattern = (
            r'^Downloading file from "gridfs://.*/.*/.*" to "unusable://temp" failed\. '
            r'GridFS filename: "filename"$'
        )

        with pytest.raises(StreamError, match=pattern):
            bucket.download_to_stream_by_name('filename', UnusableStream())

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_open_download_stream(self, bucket, upload, data, expected_chunks):
        file_id = upload('filename', data)

        with bucket.open_download_stream(file_id) as stream:
            assert stream.read() == data

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_open_download_stream_and_multiple_read_operations(self, bucket, upload, data, expected_chunks):
        file_id = upload('filename', data)
        stream = bucket.open_download_stream(file_id)
        buffer = b''

        while len(buffer) < len(data):
            expected_length = min(4096, len(data) - len(buffer))
            piece = stream.read(4096)
            buffer += piece
            assert len(piece) == expected_length

        stream.close()
        assert buffer == data

    def test_open_download_stream_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.open_download_stream('nonexistent-id')

    def test_open_download_stream_by_name(self, bucket, upload):
        upload('filename', b'foo')
        upload('filename', b'bar')
        upload('filename', b'baz')

        assert bucket.open_download_stream_by_name('filename').read() == b'baz'
        assert bucket.open_download_stream_by_name('filename', revision=-3).read() == b'foo'
        assert bucket.open_download_stream_by_name('filename', revision=-2).read() == b'bar'
        assert bucket.open_download_stream_by_name('filename', revision=-1).read() == b'baz'
        assert bucket.open_download_stream_by_name('filename', revision=0).read() == b'foo'
        assert bucket.open_download_stream_by_name('filename', revision=1).read() == b'bar'
        assert bucket.open_download_stream_by_name('filename', revision=2).read() == b'baz'

    @pytest.mark.parametrize('filename, revision', NONEXISTENT_FILENAME_AND_REVISION)
    def test_open_download_stream_by_name_requires_filename_and_revision_to_exist(
        self, bucket, upload, filename, revision
    ):
        upload('filename', b'foo')
        upload('filename', b'bar')

        with pytest.raises(GridFileNotFoundError, match=f'revision "{revision}"'):
            bucket.open_download_stream_by_name(filename, revision=revision)

    def test_revision_must_be_an_integer(self, bucket, upload):
        upload('filename', b'foo')

        with pytest.raises(InvalidArgumentError):
            bucket.open_download_stream_by_name('filename', revision='1')

    def test_missing_file_is_reported_as_gridfs_error(self, bucket):
        with pytest.raises(GridFileNotFoundError) as exc_info:
            bucket.download_to_stream('missing', io.BytesIO())

        assert not isinstance(exc_info.value, OSError)
        assert not isinstance(exc_info.value, StreamError)


class TestCorruptFiles:
    """Chunk sequence validation while reading."""

    def test_missing_chunk(self, bucket, upload, chunks_collection):
        file_id = upload('filename', b'foobar')
        chunks_collection.delete_one({'files_id': file_id, 'n': 0})

        with pytest.raises(CorruptFileError, match='Chunk not found for index "0"'):
            bucket.open_download_stream(file_id).read()

    def test_unexpected_chunk_index(self, bucket, upload, chunks_collection):
        file_id = upload('filename', b'foobar')
        chunks_collection.update_one({'files_id': file_id, 'n': 0}, {'$set': {'n': 1}})

        with pytest.raises(CorruptFileError, match='Expected chunk to have index "0" but found "1"'):
            bucket.open_download_stream(file_id).read()

    def test_unexpected_chunk_size(self, bucket, upload, chunks_collection):
        file_id = upload('filename', b'foobar')
        chunks_collection.update_one({'files_id': file_id, 'n': 0}, {'$set': {'data': b'fooba'}})

        with pytest.raises(CorruptFileError, match='Expected chunk to have size "6" but found "5"'):
            bucket.open_download_stream(file_id).read()

    def test_corruption_is_not_wrapped_by_download_to_stream(self, bucket, upload, chunks_collection):
        file_id = upload('filename', b'foobar')
        chunks_collection.delete_one({'files_id': file_id, 'n': 0})

        with pytest.raises(CorruptFileError):
            bucket.download_to_stream(file_id, io.BytesIO())


class TestDeleteAndRename:
    """delete, delete_by_name, rename, rename_by_name and drop."""

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_delete(self, bucket, upload, files_collection, chunks_collection, data, expected_chunks):
        file_id = upload('filename', data)

        assert files_collection.count_documents() == 1
        assert chunks_collection.count_documents() == expected_chunks

        bucket.delete(file_id)

        assert files_collection.count_documents() == 0
        assert chunks_collection.count_documents() == 0

    def test_delete_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.delete('nonexistent-id')

    @pytest.mark.parametrize('data, expected_chunks', INPUT_DATA_AND_EXPECTED_CHUNKS)
    def test_delete_still_removes_chunks_if_file_does_not_exist(
        self, bucket, upload, files_collection, chunks_collection, data, expected_chunks
    ):
        file_id = upload('filename', data)
        assert chunks_collection.count_documents() == expected_chunks

        files_collection.delete_one({'_id': file_id})

        with pytest.raises(GridFileNotFoundError):
            bucket.delete(file_id)

        assert chunks_collection.count_documents() == 0

    def test_delete_by_name(self, bucket, upload, files_collection, chunks_collection):
        upload('filename', b'foobar1')
        upload('filename', b'foobar2')
        upload('filename', b'foobar3')
        upload('other', b'foobar')

        assert files_collection.count_documents() == 4
        assert chunks_collection.count_documents() == 4

        bucket.delete_by_name('filename')

        assert files_collection.count_documents() == 1
        assert chunks_collection.count_documents() == 1

        bucket.delete_by_name('other')

        assert files_collection.count_documents() == 0
        assert chunks_collection.count_documents() == 0

    def test_delete_by_name_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.delete_by_name('nonexistent-name')

    def test_rename(self, bucket, upload, files_collection):
        file_id = upload('a', b'foo')
        bucket.rename(file_id, 'b')

        assert files_collection.find_one({'_id': file_id}, projection={'filename': 1, '_id': 0}) == {'filename': 'b'}
        assert download_by_name(bucket, 'b') == b'foo'

    def test_rename_does_not_require_file_to_be_modified(self, bucket, upload, files_collection):
        file_id = upload('a', b'foo')
        bucket.rename(file_id, 'a')

        assert files_collection.find_one({'_id': file_id}, projection={'filename': 1, '_id': 0}) == {'filename': 'a'}
        assert download_by_name(bucket, 'a') == b'foo'

    def test_rename_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.rename('nonexistent-id', 'b')

    def test_rename_by_name(self, bucket, upload):
        upload('filename', b'foo')
        upload('filename', b'foo')
        upload('filename', b'foo')

        bucket.rename_by_name('filename', 'newname')

        assert bucket.find_one({'filename': 'filename'}) is None
        assert download_by_name(bucket, 'newname') == b'foo'
        assert len(list(bucket.find({'filename': 'newname'}))) == 3

    def test_rename_by_name_requires_file_to_exist(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.rename_by_name('nonexistent-name', 'b')

    def test_drop(self, bucket, upload, database, files_collection, chunks_collection):
        upload('filename', b'foobar')

        assert files_collection.count_documents() == 1
        assert chunks_collection.count_documents() == 1

        bucket.drop()

        assert not database.collection_exists('fs.files')
        assert not database.collection_exists('fs.chunks')


class TestFind:
    """find, find_one and document representation."""

    @pytest.fixture
    def three_files(self, upload):
        upload('a', b'foo')
        upload('b', b'foobar')
        upload('c', b'foobarbaz')

    def test_find(self, bucket, three_files):
        cursor = bucket.find(
            {'length': {'$lte': 6}},
            projection={'filename': 1, 'length': 1, '_id': 0},
            sort={'length': -1},
        )

        assert list(cursor) == [
            {'filename': 'b', 'length': 6},
            {'filename': 'a', 'length': 3},
        ]

    def test_find_with_skip_and_limit(self, bucket, three_files):
        cursor = bucket.find({}, projection={'filename': 1, '_id': 0}, sort=[('length', 1)], skip=1, limit=1)

        assert list(cursor) == [{'filename': 'b'}]

    def test_find_returns_plain_documents_by_default(self, bucket, three_files):
        document = next(bucket.find())

        assert type(document) is dict

    def test_find_uses_codec(self, bucket, three_files):
        files = list(bucket.find({}, sort={'filename': 1}, codec=GridFileCodec()))

        assert all(isinstance(file, GridFile) for file in files)
        assert [file.filename for file in files] == ['a', 'b', 'c']

    def test_find_uses_type_map(self, bucket, upload):
        upload('a', b'foo', metadata={'nested': {'x': 1}})

        document = next(bucket.find({}, type_map=TypeMap(root=Document, document=Document)))

        assert isinstance(document, Document)
        assert isinstance(document['metadata'], Document)
        assert isinstance(document['metadata']['nested'], Document)

    def test_find_inherits_bucket_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        bucket.upload_from_stream('a', io.BytesIO(b'foo'))

        file = next(bucket.find())

        assert isinstance(file, GridFile)
        assert file.filename == 'a'
        assert file.length == 3

    def test_find_resets_inherited_bucket_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        bucket.upload_from_stream('a', io.BytesIO(b'foo'))

        document = next(bucket.find({}, codec=None))

        assert type(document) is dict
        assert document['filename'] == 'a'

    def test_find_with_type_map_overrides_bucket_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        bucket.upload_from_stream('a', io.BytesIO(b'foo'))

        document = next(bucket.find({}, type_map=TypeMap(root=Document)))

        assert isinstance(document, Document)

    def test_find_rejects_codec_and_type_map_together(self, bucket):
        with pytest.raises(InvalidArgumentError):
            bucket.find({}, codec=GridFileCodec(), type_map=TypeMap())

    def test_find_rejects_negative_skip(self, bucket):
        with pytest.raises(InvalidArgumentError):
            bucket.find({}, skip=-1)

    def test_find_one(self, bucket, three_files):
        document = bucket.find_one(
            {'length': {'$lte': 6}},
            projection={'filename': 1, 'length': 1, '_id': 0},
            sort={'length': -1},
        )

        assert document == {'filename': 'b', 'length': 6}

    def test_find_one_returns_none_without_match(self, bucket, three_files):
        assert bucket.find_one({'filename': 'missing'}) is None

    def test_find_one_uses_codec(self, bucket, three_files):
        file = bucket.find_one({'length': {'$lte': 6}}, sort={'length': -1}, codec=GridFileCodec())

        assert isinstance(file, GridFile)
        assert file.filename == 'b'
        assert file.length == 6

    def test_find_one_inherits_bucket_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        for filename, data in (('a', b'foo'), ('b', b'foobar'), ('c', b'foobarbaz')):
            bucket.upload_from_stream(filename, io.BytesIO(data))

        file = bucket.find_one({'length': {'$lte': 6}}, sort={'length': -1})

        assert isinstance(file, GridFile)
        assert file.filename == 'b'

    def test_find_one_resets_inherited_bucket_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        for filename, data in (('a', b'foo'), ('b', b'foobar'), ('c', b'foobarbaz')):
            bucket.upload_from_stream(filename, io.BytesIO(data))

        document = bucket.find_one({'length': {'$lte': 6}}, sort={'length': -1}, codec=None)

        assert type(document) is dict
        assert document['filename'] == 'b'
        assert document['length'] == 6

    def test_find_one_rejects_limit(self, bucket):
        with pytest.raises(InvalidArgumentError):
            bucket.find_one({}, limit=1)


class TestStreamIntrospection:
    """get_file_document_for_stream and get_file_id_for_stream."""

    def test_file_document_for_readable_stream(self, bucket, upload):
        file_id = upload('filename', b'foobar', metadata={'foo': 'bar'})
        stream = bucket.open_download_stream(file_id)

        document = bucket.get_file_document_for_stream(stream)

        assert document['_id'] == file_id
        assert document['filename'] == 'filename'
        assert document['length'] == 6
        assert document['metadata'] == {'foo': 'bar'}

    def test_file_document_for_writable_stream(self, bucket):
        stream = bucket.open_upload_stream('filename', file_id=1, metadata={'foo': 'bar'})

        document = bucket.get_file_document_for_stream(stream)

        assert document['_id'] == 1
        assert document['filename'] == 'filename'
        assert document['metadata'] == {'foo': 'bar'}
        assert 'length' not in document
        stream.abort()

    def test_file_document_for_stream_uses_type_map(self, database):
        bucket = Bucket(database, type_map=TypeMap(root=Document, document=Document))
        stream = bucket.open_upload_stream('filename', file_id=1, metadata={'foo': 'bar'})

        document = bucket.get_file_document_for_stream(stream)

        assert isinstance(document, Document)
        assert isinstance(document['metadata'], Document)
        assert document['metadata'] == {'foo': 'bar'}
        stream.abort()

    def test_file_document_for_stream_uses_codec(self, database):
        bucket = Bucket(database, codec=GridFileCodec())
        stream = bucket.open_upload_stream('filename', file_id=1, metadata={'foo': 'bar'})

        file = bucket.get_file_document_for_stream(stream)

        assert isinstance(file, GridFile)
        assert file.filename == 'filename'
        assert file.metadata == {'foo': 'bar'}
        stream.abort()

    def test_file_document_does_not_expose_stream_state(self, bucket):
        stream = bucket.open_upload_stream('filename', file_id=1)

        bucket.get_file_document_for_stream(stream)['filename'] = 'changed'

        assert stream.get_file()['filename'] == 'filename'
        stream.abort()

    def test_file_id_for_readable_stream(self, bucket, upload):
        file_id = upload('filename', b'foobar')

        assert bucket.get_file_id_for_stream(bucket.open_download_stream(file_id)) == file_id

    def test_file_id_for_writable_stream(self, bucket):
        stream = bucket.open_upload_stream('filename', file_id=1)

        assert bucket.get_file_id_for_stream(stream) == 1
        stream.abort()

    def test_file_id_for_stream_uses_type_map(self, database):
        bucket = Bucket(database, type_map=TypeMap(root=Document, document=Document))
        stream = bucket.open_upload_stream('filename', file_id={'x': 1})

        file_id = bucket.get_file_id_for_stream(stream)

        assert isinstance(file_id, Document)
        assert file_id == {'x': 1}
        stream.abort()

    @pytest.mark.parametrize('stream', [None, 'string', 123, io.BytesIO()])
    def test_stream_introspection_requires_bucket_stream(self, bucket, stream):
        with pytest.raises(InvalidArgumentError):
            bucket.get_file_document_for_stream(stream)
        with pytest.raises(InvalidArgumentError):
            bucket.get_file_id_for_stream(stream)

    def test_stream_introspection_rejects_streams_of_other_buckets(self, database, bucket):
        other = Bucket(database, bucket_name='other')
        stream = other.open_upload_stream('filename')

        with pytest.raises(InvalidArgumentError):
            bucket.get_file_id_for_stream(stream)
        stream.abort()


class TestIndexes:
    """Index bootstrap on first write."""

    def test_uploading_first_file_creates_indexes(self, bucket, upload, files_collection, chunks_collection):
        upload('filename', b'foo')

        files_indexes = {index.name: index for index in files_collection.list_indexes()}
        chunks_indexes = {index.name: index for index in chunks_collection.list_indexes()}

        assert 'filename_1_uploadDate_1' in files_indexes
        assert 'files_id_1_n_1' in chunks_indexes
        assert chunks_indexes['files_id_1_n_1'].unique

    def test_existing_index_is_reused(self, bucket, upload, files_collection, chunks_collection):
        files_collection.create_index({'filename': 1.0, 'uploadDate': 1}, name='test')
        chunks_collection.create_index({'files_id': 1.0, 'n': 1}, name='test', unique=True)

        upload('filename', b'foo')

        assert [index.name for index in files_collection.list_indexes()] == ['_id_', 'test']
        assert [index.name for index in chunks_collection.list_indexes()] == ['_id_', 'test']

    def test_non_unique_chunks_index_is_not_reused(self, bucket, upload, chunks_collection):
        chunks_collection.create_index({'files_id': 1, 'n': 1}, name='test')

        upload('filename', b'foo')

        names = [index.name for index in chunks_collection.list_indexes()]
        assert 'files_id_1_n_1' in names

    def test_indexes_are_checked_once_per_bucket(self, bucket, upload, files_collection):
        with patch.object(files_collection, 'list_indexes', wraps=files_collection.list_indexes) as list_indexes:
            upload('first', b'foo')
            upload('second', b'bar')

        assert list_indexes.call_count == 1

    def test_indexes_are_not_checked_when_files_exist(self, database, upload):
        upload('first', b'foo')

        other = Bucket(database)
        with patch.object(other.files_collection, 'list_indexes') as list_indexes:
            other.upload_from_stream('second', io.BytesIO(b'bar'))

        list_indexes.assert_not_called()
        assert other.find_one({'filename': 'second'})['length'] == 3


class TestPathResolution:
    """resolve_stream_context for gridfs:// paths."""

    def test_resolve_stream_context_for_read(self, bucket, upload):
        upload('filename', b'foobar')

        context = bucket.resolve_stream_context('gridfs://bucket/filename', 'rb')

        assert isinstance(context['collection_wrapper'], CollectionWrapper)
        assert context['file']['filename'] == 'filename'
        assert isinstance(context['file']['_id'], str)

    def test_resolve_stream_context_for_write(self, bucket):
        context = bucket.resolve_stream_context('gridfs://bucket/filename', 'wb')

        assert isinstance(context['collection_wrapper'], CollectionWrapper)
        assert context['filename'] == 'filename'
        assert context['options'] == {'chunk_size_bytes': 261120, 'disable_md5': False}

    def test_resolve_stream_context_for_missing_file(self, bucket):
        with pytest.raises(GridFileNotFoundError):
            bucket.resolve_stream_context('gridfs://bucket/filename', 'r')

    def test_resolve_stream_context_rejects_unknown_mode(self, bucket):
        with pytest.raises(InvalidArgumentError):
            bucket.resolve_stream_context('gridfs://bucket/filename', 'a')
