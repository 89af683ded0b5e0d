# k8smetrics

Building blocks for gathering metrics about a Kubernetes cluster and shaping
them into entities, metric sets and inventory of an in-memory integration.

The package depends on `requests`. Its `test` extra adds `pytest` for running
the test suite.

## Modules

- `k8smetrics.definition` holds metric specifications.
  - `from_raw(metric_key)` returns a fetch function
    `(group_label, entity_id, groups)` that reads a value from raw groups laid
    out as group, then entity, then metric. It raises `FetchError` when the
    group, the entity or the metric is missing.
  - `transform(fetch_func, transform_func)` applies a function to what was
    fetched.
  - `FetchedValues` is a dict of several values that each become their own
    metric.
  - `Spec` describes one metric: name, fetch function, `SourceType` and
    whether it is optional. `SpecGroup` bundles specs with optional entity ID
    and entity type generators.
- `k8smetrics.data` holds the following.
  - `Grouper` is the abstract interface with `group(spec_groups)`.
  - `ErrorGroup` is an exception holding several errors, marked recoverable or
    not. Its `append(*errors)` adds to it, and its text reads, for example,
    `Recoverable error group: err1, err2`.
  - `PopulateResult` records the outcome of populating.
- `k8smetrics.integration` holds the in-memory payload.
  - `Integration.entity(name, entity_type)` returns an existing entity or
    creates one. It raises `IntegrationError` if the name or the type is
    empty. `Integration.clear()` removes all entities.
  - `Entity` carries a list of `MetricSet`s, an `Inventory` and `metadata`
    (an `EntityMetadata`). Attributes added with `add_attributes` are copied
    into every metric set created afterwards with `new_metric_set`.
  - `MetricSet.set_metric(name, value, source_type)` stores values by type.
    Attributes must be strings. Gauges are stored as floats. Rates and deltas
    are computed against the previous value seen for the same metric.
- `k8smetrics.populate` provides `integration_populator(config)`.
  - It takes an `IntegrationPopulateConfig`.
  - It creates one entity per raw entity of every group that has a spec group.
  - It adds `clusterName` and `displayName` attributes.
  - It fills a metric set whose type the `ms_type_guesser` decides.
  - It returns `(populated, errors)`.
  - When anything was populated it also adds a `k8s:cluster` entity with a
    `K8sClusterSample` metric set and cluster inventory.
- `k8smetrics.discovery` holds abstract interfaces.
  - `HTTPGetter`, `NodeIPGetter` and `HTTPClient` describe discovered clients.
  - `Discoverer` and `MultiDiscoverer` describe discovery.
  - `Kubernetes` describes the Kubernetes API operations the other modules
    expect.
- `k8smetrics.client` holds sessions.
  - `TimeoutSession` is a `requests.Session` with a default timeout.
  - `basic_http_client(timeout)` returns such a session.
  - `insecure_http_client(timeout)` returns one that also skips TLS
    verification.
- `k8smetrics.cached` caches discovery results.
  - `Storage` is an in-memory key-value cache stamped with write times.
  - `DiscoveryCacher` and `MultiDiscoveryCacher` keep discovery results in a
    `Storage` for a TTL, with optional jitter (see `expired`).
  - `DiscoveryCacher` returns a `CacheAwareClient`. When a request fails, that
    client rediscovers. If rediscovery also fails, it drops the cache entry and
    raises the error. `wrapped_client` returns the client inside it.
- `k8smetrics.apiserver` queries the API server.
  - `NodeInfo` has `is_master_node()` and dict round trips. `VersionInfo` does
    the same for the server version.
  - `KubernetesClient` is built over an object with `find_node` (returning the
    node in the API's JSON form) and `server_version`.
  - `FakeAPIServer` holds nodes in memory.
  - `FileCacheClient` caches node information and the server version in a
    `Storage` for the configured TTL. Time comes from a `TimeProvider`.
- `k8smetrics.controlplane` describes the monitored components.
  - `build_component_list(*options)` returns the scheduler, etcd, controller
    manager and API server components. etcd is marked to skip unless TLS is
    configured.
  - The options are `with_etcd_tls_config(...)`,
    `with_api_server_secure_port(...)` and `with_endpoint_url(...)`. They
    raise `LookupError` when the component is absent. `with_endpoint_url`
    raises `ValueError` for an invalid URL.
- `k8smetrics.controlplane_client` finds and queries components.
  - `ComponentDiscoverer.discover(timeout)` matches pods from a pods fetcher
    against the component's label sets. It returns a
    `ControlPlaneComponentClient`.
  - The client authenticates with nothing, with mutual TLS or with a service
    account token. Mutual TLS reads a secret through the Kubernetes client, and
    `parse_tls_config` builds a `TLSConfig`. The token is read from the
    in-cluster token file and needs `KUBERNETES_SERVICE_HOST` and
    `KUBERNETES_SERVICE_PORT`.
  - If the secure endpoint fails and insecure fallback is on, the client tries
    the plain endpoint.

## Example

```python
from k8smetrics.definition import FetchError, from_raw, transform

groups = {"pod": {"default_web": {"podName": "web"}}}
fetch = transform(from_raw("podName"), str.upper)
print(fetch("pod", "default_web", groups))  # WEB

try:
    from_raw("podName")("node", "default_web", groups)
except FetchError as err:
    print(err)  # group "node" not found
```

## What the package does not do

- It has no command-line program.
- It does not talk to the Kubernetes API itself. `Kubernetes` is only an
  interface, and you supply the object behind it.
- `Storage` keeps entries in memory only.
- An `Integration` is built in memory and is not published anywhere.
- Nothing here scrapes or parses Prometheus, kubelet or kube-state-metrics
  data. Raw groups are supplied by the caller.