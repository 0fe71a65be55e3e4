from stack_test_helpers import find_resources_by_type


def assert_bucket_compliance(template):
    buckets = find_resources_by_type(template, "AWS::S3::Bucket")
    assert buckets, "expected at least one bucket"
    for logical_id, bucket in buckets.items():
        props = bucket["Properties"]
        pab = props["PublicAccessBlockConfiguration"]
        assert all(
            value is True for value in pab.values()
        ), f"{logical_id}: PublicAccessBlockConfiguration must have all flags set to True"
        encryption = props["BucketEncryption"]["ServerSideEncryptionConfiguration"]
        assert encryption, f"{logical_id}: bucket must be encrypted at rest"
