import unittest

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError, EndpointConnectionError

from fakes import client_error
from s3_tree.errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    OperationCancelledError,
    ServiceError,
    ValidationError,
)
from s3_tree.profiles import ConnectionProfile
from s3_tree.retry import RetryPolicy
from s3_tree.services import FOLDER_CONTENT_TYPE, S3Service


PROFILE = ConnectionProfile(
    name="test",
    endpoint_url="https://s3.example.com",
    access_key="AKIA",
    secret_key="secret",
)


class FakeS3Client:
    def __init__(
        self,
        buckets=None,
        object_responses=None,
        head_object_responses=None,
        delete_objects_responses=None,
        list_buckets_responses=None,
        presigned_url_outputs=None,
        transfer_sequences=None,
        upload_failures=None,
    ):
        self.buckets = buckets or []
        self.object_responses = {name: iter(responses) for name, responses in (object_responses or {}).items()}
        self.list_objects_calls = []
        self.list_objects_kwargs = []
        self.head_object_calls = []
        self.head_object_responses = head_object_responses or {}
        self.delete_object_calls = []
        self.delete_objects_calls = []
        self.delete_objects_responses = iter(delete_objects_responses or [])
        self.list_buckets_responses = iter(list_buckets_responses or [])
        self.list_buckets_calls = 0
        self.copy_object_calls = []
        self.put_object_calls = []
        self.presigned_url_outputs = presigned_url_outputs or {}
        self.presigned_url_calls = []
        self.transfer_sequences = transfer_sequences or {}
        self.upload_failures = upload_failures or {}
        self.upload_file_calls = []
        self.download_file_calls = []

    def list_buckets(self):
        self.list_buckets_calls += 1
        response = next(self.list_buckets_responses, None)
        if isinstance(response, Exception):
            raise response
        return response or {"Buckets": [{"Name": name} for name in self.buckets]}

    def list_objects_v2(self, **kwargs):
        bucket = kwargs["Bucket"]
        continuation = kwargs.get("ContinuationToken")
        self.list_objects_calls.append((bucket, continuation))
        self.list_objects_kwargs.append(kwargs)

        response = next(self.object_responses[bucket])
        if isinstance(response, Exception):
            raise response
        return response

    def head_object(self, **kwargs):
        self.head_object_calls.append(kwargs)
        response = self.head_object_responses.get((kwargs["Bucket"], kwargs["Key"]), {})
        if isinstance(response, Exception):
            raise response
        return response

    def put_object(self, **kwargs):
        self.put_object_calls.append(kwargs)
        return {}

    def delete_object(self, **kwargs):
        self.delete_object_calls.append((kwargs["Bucket"], kwargs["Key"]))
        return {}

    def delete_objects(self, **kwargs):
        self.delete_objects_calls.append(kwargs)
        return next(self.delete_objects_responses, {})

    def copy_object(self, **kwargs):
        self.copy_object_calls.append(kwargs)
        return {}

    def upload_file(self, filename, bucket, key, Callback=None, ExtraArgs=None, Config=None):
        self.upload_file_calls.append({"filename": filename, "bucket": bucket, "key": key, "extra_args": ExtraArgs, "config": Config})
        failure = self.upload_failures.get((bucket, key))
        if failure is not None:
            try:
                raise failure
            except ClientError as exc:
                raise S3UploadFailedError(f"Failed to upload {filename} to {bucket}/{key}: {exc}")
        if Callback:
            for amount in self.transfer_sequences.get(("upload", bucket, key), []):
                Callback(amount)

    def download_file(self, bucket, key, filename, Callback=None):
        self.download_file_calls.append((bucket, key, filename))
        if Callback:
            for amount in self.transfer_sequences.get(("download", bucket, key), []):
                Callback(amount)

    def generate_presigned_url(self, client_method, Params=None, ExpiresIn=3600):
        params = Params or {}
        self.presigned_url_calls.append(
            {
                "method": client_method,
                "params": params,
                "expires_in": ExpiresIn,
            }
        )
        return self.presigned_url_outputs.get((client_method, params.get("Bucket"), params.get("Key")), "signed-url")


def make_service(fake_client, *, sleeps=None, policy=None, profile=PROFILE):
    recorded = sleeps if sleeps is not None else []
    return S3Service(
        profile,
        client_factory=lambda *_, **__: fake_client,
        retry_policy=policy or RetryPolicy(max_retries=3, base_delay=1.0),
        sleep=recorded.append,
    )


class ListingTests(unittest.TestCase):
    def test_list_objects_groups_prefixes_and_skips_own_marker(self):
        fake_client = FakeS3Client(
            object_responses={
                "bucket": [
                    {
                        "Contents": [
                            {"Key": "photos/", "Size": 0},
                            {"Key": "photos/cat.png", "Size": 12, "ETag": '"abc"'},
                        ],
                        "CommonPrefixes": [{"Prefix": "photos/2024/"}],
                        "IsTruncated": False,
                    }
                ]
            }
        )
        service = make_service(fake_client)

        page = service.list_objects("bucket", "photos/")

        self.assertEqual([obj.key for obj in page.objects], ["photos/cat.png"])
        self.assertEqual(page.objects[0].size, 12)
        self.assertEqual([prefix.prefix for prefix in page.prefixes], ["photos/2024/"])
        self.assertFalse(page.is_truncated)
        self.assertIsNone(page.continuation_token)
        self.assertEqual(
            fake_client.list_objects_kwargs[0],
            {"Bucket": "bucket", "MaxKeys": 1000, "Prefix": "photos/", "Delimiter": "/"},
        )

    def test_list_objects_clamps_page_size_and_passes_token(self):
        fake_client = FakeS3Client(
            object_responses={
                "bucket": [{"Contents": [{"Key": "a"}], "IsTruncated": True, "NextContinuationToken": "next"}]
            }
        )
        service = make_service(fake_client)

        page = service.list_objects("bucket", continuation_token="prev", max_keys=5000)

        self.assertTrue(page.is_truncated)
        self.assertEqual(page.continuation_token, "next")
        kwargs = fake_client.list_objects_kwargs[0]
        self.assertEqual(kwargs["MaxKeys"], 1000)
        self.assertEqual(kwargs["ContinuationToken"], "prev")
        self.assertNotIn("Prefix", kwargs)

    def test_list_objects_rejects_non_positive_page_size(self):
        service = make_service(FakeS3Client())

        with self.assertRaises(ValueError):
            service.list_objects("bucket", max_keys=0)

    def test_missing_bucket_is_reported_by_name(self):
        fake_client = FakeS3Client(
            object_responses={"gone": [client_error("NoSuchBucket", 404, "ListObjectsV2")]}
        )
        service = make_service(fake_client)

        with self.assertRaises(NotFoundError) as ctx:
            service.list_objects("gone")

        self.assertEqual(str(ctx.exception), "Bucket 'gone' does not exist")
        self.assertEqual(ctx.exception.code, "NoSuchBucket")

    def test_recursive_listing_follows_tokens_without_delimiter(self):
        fake_client = FakeS3Client(
            object_responses={
                "bucket": [
                    {
                        "Contents": [{"Key": "docs/"}, {"Key": "docs/a.txt"}, {"Key": "docs/sub/"}],
                        "IsTruncated": True,
                        "NextContinuationToken": "t1",
                    },
                    {
                        "Contents": [{"Key": "docs/sub/b.txt"}],
                        "IsTruncated": False,
                    },
                ]
            }
        )
        service = make_service(fake_client)

        pages = list(service.iter_all_recursive("bucket", "docs/"))

        self.assertEqual([[obj.key for obj in page] for page in pages], [["docs/a.txt", "docs/sub/"], ["docs/sub/b.txt"]])
        self.assertEqual(fake_client.list_objects_calls, [("bucket", None), ("bucket", "t1")])
        self.assertTrue(all("Delimiter" not in kwargs for kwargs in fake_client.list_objects_kwargs))

    def test_recursive_listing_grows_monotonically_and_covers_first_page(self):
        pages = [
            {"Contents": [{"Key": f"k{i}"} for i in range(3)], "IsTruncated": True, "NextContinuationToken": "t1"},
            {"Contents": [{"Key": f"k{i}"} for i in range(3, 5)], "IsTruncated": True, "NextContinuationToken": "t2"},
            {"Contents": [{"Key": "k5"}], "IsTruncated": False},
        ]
        first_page_client = FakeS3Client(object_responses={"bucket": [dict(pages[0])]})
        first_page = make_service(first_page_client).list_objects("bucket", delimiter=None)
        service = make_service(FakeS3Client(object_responses={"bucket": pages}))

        seen = []
        totals = []
        for page in service.iter_all_recursive("bucket"):
            seen.extend(page)
            totals.append(len(seen))

        self.assertEqual(totals, sorted(totals))
        self.assertEqual(totals[-1], 6)
        self.assertTrue({obj.key for obj in first_page.objects} <= {obj.key for obj in seen})

    def test_recursive_listing_respects_max_objects(self):
        fake_client = FakeS3Client(
            object_responses={
                "bucket": [
                    {"Contents": [{"Key": "a"}, {"Key": "b"}], "IsTruncated": True, "NextContinuationToken": "t1"},
                    {"Contents": [{"Key": "c"}, {"Key": "d"}], "IsTruncated": True, "NextContinuationToken": "t2"},
                ]
            }
        )
        service = make_service(fake_client)

        objects = service.list_all_recursive("bucket", max_objects=3)

        self.assertEqual([obj.key for obj in objects], ["a", "b", "c"])
        self.assertEqual([kwargs["MaxKeys"] for kwargs in fake_client.list_objects_kwargs], [3, 1])

    def test_search_objects_filters_case_insensitively(self):
        fake_client = FakeS3Client(
            object_responses={
                "bucket": [{"Contents": [{"Key": "img/Photo.PNG"}, {"Key": "readme.md"}], "IsTruncated": False}]
            }
        )
        service = make_service(fake_client)

        results = service.search_objects("bucket", contains="png")

        self.assertEqual([obj.key for obj in results], ["img/Photo.PNG"])


class RetryTests(unittest.TestCase):
    def test_service_unavailable_is_retried_with_growing_delay(self):
        unavailable = client_error("ServiceUnavailable", 503, "ListBuckets")
        fake_client = FakeS3Client(list_buckets_responses=[unavailable] * 4)
        sleeps = []
        service = make_service(fake_client, sleeps=sleeps)

        with self.assertRaises(ServiceError) as ctx:
            service.list_buckets()

        self.assertEqual(fake_client.list_buckets_calls, 4)
        self.assertEqual(sleeps, [1.0, 2.0, 4.0])
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertTrue(ctx.exception.retryable)

    def test_transient_error_recovers(self):
        fake_client = FakeS3Client(
            buckets=["alpha"],
            list_buckets_responses=[client_error("SlowDown", 503, "ListBuckets")],
        )
        sleeps = []
        service = make_service(fake_client, sleeps=sleeps)

        buckets = service.list_buckets()

        self.assertEqual([bucket.name for bucket in buckets], ["alpha"])
        self.assertEqual(sleeps, [1.0])

    def test_access_denied_is_not_retried(self):
        fake_client = FakeS3Client(list_buckets_responses=[client_error("AccessDenied", 403, "ListBuckets")])
        sleeps = []
        service = make_service(fake_client, sleeps=sleeps)

        with self.assertRaises(AuthError):
            service.list_buckets()

        self.assertEqual(fake_client.list_buckets_calls, 1)
        self.assertEqual(sleeps, [])

    def test_connection_failures_become_network_errors(self):
        failure = EndpointConnectionError(endpoint_url="https://s3.example.com")
        fake_client = FakeS3Client(list_buckets_responses=[failure, failure])
        sleeps = []
        service = make_service(fake_client, sleeps=sleeps, policy=RetryPolicy(max_retries=1, base_delay=0.5))

        with self.assertRaises(NetworkError):
            service.list_buckets()

        self.assertEqual(sleeps, [0.5])

    def test_connection_test_rewords_auth_failures(self):
        fake_client = FakeS3Client(list_buckets_responses=[client_error("InvalidAccessKeyId", 403, "ListBuckets")])
        service = make_service(fake_client)

        with self.assertRaises(AuthError) as ctx:
            service.test_connection()

        self.assertIn("check your access credentials", str(ctx.exception))

    def test_connection_test_reports_unknown_endpoint(self):
        fake_client = FakeS3Client(list_buckets_responses=[client_error("NotFound", 404, "ListBuckets")])
        service = make_service(fake_client)

        with self.assertRaises(ValidationError) as ctx:
            service.test_connection()

        self.assertIn("https://s3.example.com", str(ctx.exception))


class ObjectTests(unittest.TestCase):
    def test_delete_objects_sends_quiet_batch_and_returns_failures(self):
        fake_client = FakeS3Client(
            delete_objects_responses=[
                {"Errors": [{"Key": "b", "Code": "AccessDenied", "Message": "denied"}]},
            ]
        )
        service = make_service(fake_client)

        failures = service.delete_objects("bucket", ["a", "b"])

        self.assertEqual(failures, [("b", "AccessDenied: denied")])
        call = fake_client.delete_objects_calls[0]
        self.assertEqual(call["Bucket"], "bucket")
        self.assertEqual(call["Delete"], {"Objects": [{"Key": "a"}, {"Key": "b"}], "Quiet": True})

    def test_delete_objects_limits(self):
        fake_client = FakeS3Client()
        service = make_service(fake_client)

        self.assertEqual(service.delete_objects("bucket", []), [])
        with self.assertRaises(ValueError):
            service.delete_objects("bucket", [str(i) for i in range(1001)])
        self.assertEqual(fake_client.delete_objects_calls, [])

    def test_move_object_copies_before_deleting(self):
        fake_client = FakeS3Client()
        service = make_service(fake_client)

        service.move_object("src", "a.txt", "dst", "b.txt")

        self.assertEqual(
            fake_client.copy_object_calls,
            [{"CopySource": {"Bucket": "src", "Key": "a.txt"}, "Bucket": "dst", "Key": "b.txt"}],
        )
        self.assertEqual(fake_client.delete_object_calls, [("src", "a.txt")])

    def test_create_folder_writes_directory_marker(self):
        fake_client = FakeS3Client()
        service = make_service(fake_client)

        folder_key = service.create_folder("bucket", "reports")

        self.assertEqual(folder_key, "reports/")
        call = fake_client.put_object_calls[0]
        self.assertEqual(call["Key"], "reports/")
        self.assertEqual(call["Body"], b"")
        self.assertEqual(call["ContentType"], FOLDER_CONTENT_TYPE)

    def test_folder_exists_treats_404_as_missing(self):
        fake_client = FakeS3Client(
            head_object_responses={
                ("bucket", "missing/"): client_error("404", 404, "HeadObject"),
                ("bucket", "present/"): {"ContentLength": 0},
            }
        )
        service = make_service(fake_client)

        self.assertFalse(service.folder_exists("bucket", "missing"))
        self.assertTrue(service.folder_exists("bucket", "present/"))

    def test_object_details_are_mapped_from_head_object(self):
        fake_client = FakeS3Client(
            head_object_responses={
                ("bucket", "file.txt"): {
                    "ContentLength": 42,
                    "ContentType": "text/plain",
                    "ETag": '"etag"',
                    "Metadata": {"owner": "me"},
                }
            }
        )
        service = make_service(fake_client)

        details = service.get_object_details("bucket", "file.txt")

        self.assertEqual(details.size, 42)
        self.assertEqual(details.content_type, "text/plain")
        self.assertEqual(details.metadata, {"owner": "me"})

    def test_presigned_url_validation_and_parameters(self):
        fake_client = FakeS3Client()
        service = make_service(fake_client)

        url = service.generate_presigned_url("bucket", "file.txt", method="PUT", expires_in=60, content_type="text/plain")

        self.assertEqual(url, "signed-url")
        self.assertEqual(
            fake_client.presigned_url_calls[0],
            {
                "method": "put_object",
                "params": {"Bucket": "bucket", "Key": "file.txt", "ContentType": "text/plain"},
                "expires_in": 60,
            },
        )
        with self.assertRaises(ValueError):
            service.generate_presigned_url("bucket", "file.txt", method="delete")
        with self.assertRaises(ValueError):
            service.generate_presigned_url("bucket", "file.txt", expires_in=0)

    def test_public_url_styles(self):
        path_style = make_service(FakeS3Client())
        virtual = make_service(
            FakeS3Client(),
            profile=ConnectionProfile(
                name="aws",
                endpoint_url="https://s3.example.com",
                access_key="a",
                secret_key="b",
                force_path_style=False,
            ),
        )

        self.assertEqual(
            path_style.generate_public_url("bucket", "my file.txt"),
            "https://s3.example.com/bucket/my%20file.txt",
        )
        self.assertEqual(
            virtual.generate_public_url("bucket", "dir/a.txt"),
            "https://bucket.s3.example.com/dir/a.txt",
        )

    def test_client_is_created_once_with_single_attempt_config(self):
        created = []

        def factory(*args, **kwargs):
            created.append((args, kwargs))
            return FakeS3Client(buckets=["a"])

        service = S3Service(PROFILE, client_factory=factory)
        service.list_buckets()
        service.list_buckets()

        self.assertEqual(len(created), 1)
        args, kwargs = created[0]
        self.assertEqual(args, ("s3",))
        self.assertEqual(kwargs["endpoint_url"], "https://s3.example.com")
        self.assertEqual(kwargs["region_name"], "us-east-1")
        self.assertEqual(kwargs["config"].retries, {"max_attempts": 1})

class TransferTests(unittest.TestCase):
    def test_upload_reports_running_total_and_content_type(self):
        fake_client = FakeS3Client(transfer_sequences={("upload", "bucket-one", "docs/a.txt"): [512, 512, 256]})
        service = make_service(fake_client)
        progress = []

        service.upload_file("bucket-one", "docs/a.txt", "/tmp/a.txt", progress_callback=progress.append)

        self.assertEqual([512, 1024, 1280], progress)
        call = fake_client.upload_file_calls[0]
        self.assertEqual("/tmp/a.txt", call["filename"])
        self.assertEqual({"ContentType": "text/plain"}, call["extra_args"])
        self.assertIsNone(call["config"])

    def test_upload_passes_multipart_settings(self):
        fake_client = FakeS3Client()
        service = make_service(fake_client)

        service.upload_file(
            "bucket-one",
            "big.bin",
            "/tmp/big.bin",
            multipart_threshold=16 * 1024 * 1024,
            multipart_chunk_size=0,
        )

        config = fake_client.upload_file_calls[0]["config"]
        self.assertEqual(16 * 1024 * 1024, config.multipart_threshold)
        self.assertEqual(8 * 1024 * 1024, config.multipart_chunksize)

    def test_upload_can_be_cancelled_between_chunks(self):
        fake_client = FakeS3Client(transfer_sequences={("upload", "bucket-one", "a.txt"): [512, 512, 512]})
        service = make_service(fake_client)
        progress = []

        with self.assertRaises(OperationCancelledError):
            service.upload_file(
                "bucket-one",
                "a.txt",
                "/tmp/a.txt",
                progress_callback=progress.append,
                cancel_requested=lambda: len(progress) >= 2,
            )

        self.assertEqual([512, 1024], progress)

    def test_upload_failures_are_classified(self):
        fake_client = FakeS3Client(upload_failures={("bucket-one", "a.txt"): client_error("AccessDenied", 403, "PutObject")})
        sleeps = []
        service = make_service(fake_client, sleeps=sleeps)

        with self.assertRaises(AuthError) as ctx:
            service.upload_file("bucket-one", "a.txt", "/tmp/a.txt")

        self.assertIn("Failed to upload file '/tmp/a.txt'", str(ctx.exception))
        self.assertEqual([], sleeps)

    def test_download_reports_running_total(self):
        fake_client = FakeS3Client(transfer_sequences={("download", "bucket-one", "a.txt"): [1024, 2048]})
        service = make_service(fake_client)
        progress = []

        service.download_file("bucket-one", "a.txt", "/tmp/a.txt", progress_callback=progress.append)

        self.assertEqual([("bucket-one", "a.txt", "/tmp/a.txt")], fake_client.download_file_calls)
        self.assertEqual([1024, 3072], progress)


if __name__ == "__main__":
    unittest.main()
